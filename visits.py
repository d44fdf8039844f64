"""Patient intake and the examination write sequence.

An examination produces a linked chain of records::

    Patient -> Diagnosis -> Prescription -> PrescriptionItem*

Each step needs the identifier generated by the previous one, so the rows are
flushed one after another inside a single transaction and committed together.
A failure at any step rolls the whole chain back.
"""
from collections import namedtuple
import datetime
import uuid

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from errors import BackendError, NotFound, ValidationError
from extensions import db
from models import (
    Diagnosis,
    Patient,
    Prescription,
    PrescriptionItem,
    PATIENT_EXAMINED,
    PATIENT_WAITING,
    PRESCRIPTION_PENDING,
    utcnow,
)

VisitRecord = namedtuple('VisitRecord', ['patient', 'diagnosis', 'prescription'])


def _text(value, field):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text")
    value = value.strip()
    return value or None


def _int(value, field, minimum):
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"{field} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number")
    if number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return number


def parse_patient_fields(data):
    """Validate intake fields. Returns a dict of Patient column values."""
    if not isinstance(data, dict):
        raise ValidationError("Patient details must be an object")

    name = _text(data.get('name'), 'Patient name')
    if not name:
        raise ValidationError("Patient name is required")

    fields = {
        'name': name,
        'queue_number': _text(data.get('queue_number'), 'queue_number'),
        'phone': _text(data.get('phone'), 'Phone'),
        'complaint': _text(data.get('complaint'), 'Complaint'),
        'age': None,
        'appointment_time': None,
    }
    if data.get('age') not in (None, ''):
        fields['age'] = _int(data['age'], 'Age', 0)

    appointment_time = _text(data.get('appointment_time'), 'appointment_time')
    if appointment_time:
        try:
            fields['appointment_time'] = datetime.datetime.fromisoformat(appointment_time)
        except ValueError:
            raise ValidationError("appointment_time must be an ISO-8601 datetime")
    return fields


def parse_medicines(data):
    """Validate staged medicine line items, keeping their order."""
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValidationError("Medicines must be a list")

    items = []
    for index, entry in enumerate(data, start=1):
        if not isinstance(entry, dict):
            raise ValidationError(f"Medicine #{index} must be an object")
        medicine_name = _text(entry.get('medicine_name'), f"Medicine #{index}: medicine_name")
        dosage = _text(entry.get('dosage'), f"Medicine #{index}: dosage")
        if not medicine_name or not dosage:
            raise ValidationError(f"Medicine #{index}: medicine_name and dosage are required")
        quantity = entry.get('quantity')
        quantity = 1 if quantity in (None, '') else _int(quantity, f"Medicine #{index}: quantity", 1)
        items.append({
            'medicine_name': medicine_name,
            'dosage': dosage,
            'quantity': quantity,
            'instructions': _text(entry.get('instructions'), f"Medicine #{index}: instructions"),
        })
    return items


def next_queue_number(session, prefix):
    """Next ticket for today: A-001, A-002, ..."""
    start_of_day = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    issued_today = session.query(Patient).filter(Patient.created_at >= start_of_day).count()
    return f"{prefix}-{issued_today + 1:03d}"


def generate_prescription_number(prefix, today=None):
    today = today or utcnow().date()
    return f"{prefix}-{today:%y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def create_patient(fields, session=None):
    """Intake: insert a waiting patient and assign a queue number if none was given."""
    if session is None:
        session = db.session
    patient = Patient(**fields)
    if not patient.queue_number:
        patient.queue_number = next_queue_number(session, current_app.config['QUEUE_NUMBER_PREFIX'])
    if not patient.status:
        patient.status = PATIENT_WAITING

    try:
        session.add(patient)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.exception("Failed to register patient %r", fields.get('name'))
        raise BackendError("Failed to register patient")

    current_app.logger.info("Registered patient %s (queue %s)", patient.id, patient.queue_number)
    return patient


def update_patient_status(patient_id, status, session=None):
    if session is None:
        session = db.session
    status = _text(status, 'Status')
    if not status:
        raise ValidationError("Status is required")

    patient = session.get(Patient, patient_id)
    if patient is None:
        raise NotFound("Patient not found")

    patient.status = status
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.exception("Failed to update status of patient %s", patient_id)
        raise BackendError("Failed to update patient status")
    return patient


def create_visit_record(doctor, diagnosis, symptoms=None, notes=None, medicines=None,
                        patient_id=None, patient=None, session=None):
    """Record an examination and, if medicines were staged, its prescription.

    ``doctor`` is the authenticated Profile; its id and display name are
    stamped on the diagnosis and prescription. Either ``patient_id`` (an
    existing intake record, upserted to "examined") or ``patient`` (intake
    fields for a new record) must be given.

    All validation happens before the first write. Raises ValidationError,
    NotFound, or BackendError; on BackendError nothing was persisted.
    """
    if session is None:
        session = db.session

    diagnosis = _text(diagnosis, 'Diagnosis')
    if not diagnosis:
        raise ValidationError("Diagnosis is required")
    symptoms = _text(symptoms, 'Symptoms')
    notes = _text(notes, 'Notes')
    items = parse_medicines(medicines)

    if patient_id is not None:
        existing = session.get(Patient, _int(patient_id, 'patient_id', 1))
        if existing is None:
            raise NotFound("Patient not found")
        new_patient_fields = None
    elif patient is not None:
        existing = None
        new_patient_fields = parse_patient_fields(patient)
    else:
        raise ValidationError("patient_id or patient details are required")

    doctor_name = doctor.full_name or doctor.username
    config = current_app.config

    try:
        if existing is not None:
            visit_patient = existing
            visit_patient.status = PATIENT_EXAMINED
        else:
            visit_patient = Patient(**new_patient_fields)
            if not visit_patient.queue_number:
                visit_patient.queue_number = next_queue_number(session, config['QUEUE_NUMBER_PREFIX'])
            visit_patient.status = PATIENT_EXAMINED
            session.add(visit_patient)
        session.flush()

        visit_diagnosis = Diagnosis(
            patient_id=visit_patient.id,
            doctor_id=doctor.id,
            doctor_name=doctor_name,
            diagnosis=diagnosis,
            symptoms=symptoms,
            notes=notes,
        )
        session.add(visit_diagnosis)
        session.flush()

        prescription = None
        if items:
            prescription = Prescription(
                prescription_number=generate_prescription_number(config['PRESCRIPTION_NUMBER_PREFIX']),
                diagnosis_id=visit_diagnosis.id,
                patient_id=visit_patient.id,
                doctor_id=doctor.id,
                doctor_name=doctor_name,
                status=PRESCRIPTION_PENDING,
            )
            session.add(prescription)
            session.flush()

            session.add_all([PrescriptionItem(prescription_id=prescription.id, **item) for item in items])

        session.commit()
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.exception(
            "Failed to save examination (patient_id=%s, doctor_id=%s, items=%d)",
            patient_id, doctor.id, len(items))
        raise BackendError("Failed to save examination")

    current_app.logger.info(
        "Examination saved: patient %s, diagnosis %s, prescription %s",
        visit_patient.id, visit_diagnosis.id,
        prescription.prescription_number if prescription else None)
    return VisitRecord(visit_patient, visit_diagnosis, prescription)
