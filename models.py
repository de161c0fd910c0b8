from sqlalchemy import Column, String, JSON, Index
from database import Base

class Document(Base):
    __tablename__ = "documents"
    path = Column(String, primary_key=True)          # 'teams/abc/employees/xyz'
    collection = Column(String, nullable=False)      # 'teams/abc/employees'
    doc_id = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    __table_args__ = (Index("ix_documents_collection", "collection"),)
