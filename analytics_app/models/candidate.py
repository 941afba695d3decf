# analytics_app/models/candidate.py

from .base import BaseModel, db


class Candidate(BaseModel):
    """Candidate record exported to analytics"""

    __tablename__ = "candidates"

    id = db.Column(db.Integer, primary_key=True)
    email_address = db.Column(db.String(255), nullable=True, index=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)

    def __repr__(self):
        return f"<Candidate {self.id}>"
