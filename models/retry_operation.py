from datetime import datetime
from models.db import db

class RetryOperation(db.Model):
    __tablename__ = "retry_operations"

    id = db.Column(db.Integer, primary_key=True)

    # stable key, e.g. "email-42" or "whatsapp-42"
    op_key = db.Column(db.String(120), unique=True, nullable=False, index=True)
    kind = db.Column(db.String(40), nullable=False)  # selects the registered handler
    payload_json = db.Column(db.Text, nullable=False)

    retries = db.Column(db.Integer, default=0, nullable=False)
    next_retry_at = db.Column(db.DateTime, nullable=False, index=True)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
