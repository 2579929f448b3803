from sqlalchemy import Column, String

from otpcore.database import Base


class PersonEntry(Base):
    __tablename__ = "persons"

    id = Column(String(36), primary_key=True)
    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)
    mobile_number1 = Column(String(20), nullable=True)
    mobile_number2 = Column(String(20), nullable=True)
    email_address1 = Column(String(255), nullable=True)
    email_address2 = Column(String(255), nullable=True)
