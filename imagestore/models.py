from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class ImageMetadata(db.Model):
    __tablename__ = "image_metadata"

    filename = db.Column(db.String(255), primary_key=True)
    source_url = db.Column(db.String(2048))
    product_name = db.Column(db.String(500))
    product_description = db.Column(db.Text)
    product_image_url = db.Column(db.String(2048))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "filename": self.filename,
            "sourceUrl": self.source_url,
            "productName": self.product_name,
            "productDescription": self.product_description,
            "productImageUrl": self.product_image_url,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
