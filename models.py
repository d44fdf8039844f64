from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, CheckConstraint
from sqlalchemy.orm import relationship, validates
import datetime

from extensions import db

APP_ROLES = ('patient', 'admin', 'doctor', 'pharmacist', 'owner')

PRESCRIPTION_PENDING = 'pending'
PRESCRIPTION_READY = 'ready'
PRESCRIPTION_STATUSES = (PRESCRIPTION_PENDING, PRESCRIPTION_READY)

PATIENT_WAITING = 'waiting'
PATIENT_EXAMINED = 'examined'


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Profile(TimestampMixin, db.Model):
    __tablename__ = 'profiles'

    id = Column(Integer, primary_key=True)
    username = Column(String(80), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(120))
    phone = Column(String(30))

    roles = relationship("UserRole", back_populates="profile", cascade="all, delete-orphan")

    @property
    def role_names(self):
        return sorted(r.role for r in self.roles)

    def has_role(self, *roles):
        return any(r.role in roles for r in self.roles)

    def __repr__(self):
        return f"<Profile {self.username}>"


class UserRole(db.Model):
    __tablename__ = 'user_roles'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    role = Column(Enum(*APP_ROLES, name='app_role'), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    profile = relationship("Profile", back_populates="roles")


class Patient(TimestampMixin, db.Model):
    __tablename__ = 'patients'

    id = Column(Integer, primary_key=True)
    # Human-facing ticket, e.g. A-025. Not unique across visits.
    queue_number = Column(String(20), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    age = Column(Integer)
    phone = Column(String(30))
    complaint = Column(Text)
    appointment_time = Column(DateTime)
    status = Column(String(40), default=PATIENT_WAITING)

    diagnoses = relationship("Diagnosis", back_populates="patient")
    prescriptions = relationship("Prescription", back_populates="patient")

    def __repr__(self):
        return f"<Patient {self.queue_number} - {self.name}>"


class Diagnosis(TimestampMixin, db.Model):
    __tablename__ = 'diagnoses'

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)
    doctor_id = Column(Integer, nullable=False)
    doctor_name = Column(String(120), nullable=False)
    diagnosis = Column(Text, nullable=False)
    symptoms = Column(Text)
    notes = Column(Text)

    patient = relationship("Patient", back_populates="diagnoses")
    prescriptions = relationship("Prescription", back_populates="diagnosis")


class Prescription(TimestampMixin, db.Model):
    __tablename__ = 'prescriptions'

    id = Column(Integer, primary_key=True)
    prescription_number = Column(String(40), unique=True, nullable=False)
    diagnosis_id = Column(Integer, ForeignKey('diagnoses.id'), nullable=False)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False)
    doctor_id = Column(Integer, nullable=False)
    doctor_name = Column(String(120), nullable=False)
    status = Column(String(20), default=PRESCRIPTION_PENDING, nullable=False)

    patient = relationship("Patient", back_populates="prescriptions")
    diagnosis = relationship("Diagnosis", back_populates="prescriptions")
    items = relationship("PrescriptionItem", back_populates="prescription",
                         order_by="PrescriptionItem.id")

    @validates('status')
    def validate_status(self, key, value):
        if value not in PRESCRIPTION_STATUSES:
            raise ValueError(f"Unknown prescription status: {value!r}")
        return value

    def __repr__(self):
        return f"<Prescription {self.prescription_number} ({self.status})>"


class PrescriptionItem(db.Model):
    __tablename__ = 'prescription_items'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='ck_prescription_items_quantity'),
    )

    id = Column(Integer, primary_key=True)
    prescription_id = Column(Integer, ForeignKey('prescriptions.id'), nullable=False, index=True)
    medicine_name = Column(String(120), nullable=False)
    dosage = Column(String(60), nullable=False)
    quantity = Column(Integer, nullable=False)
    instructions = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    prescription = relationship("Prescription", back_populates="items")
