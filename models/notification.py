from datetime import datetime
from models.db import db

class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(30), nullable=False, default="SERVICE_REQUEST")
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=True)
    sent_via = db.Column(db.String(60), nullable=True)  # e.g. "whatsapp,email"
    data_json = db.Column(db.Text, nullable=True)

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
