"""Prescription fulfillment: detail view, status changes and dispensing labels."""
from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from errors import BackendError, InvalidTransition, NotFound, ValidationError
from extensions import db
from models import (
    Diagnosis,
    Patient,
    Prescription,
    PrescriptionItem,
    PRESCRIPTION_PENDING,
    PRESCRIPTION_READY,
    PRESCRIPTION_STATUSES,
)

# Allowed status changes, keyed by current status.
TRANSITIONS = {
    PRESCRIPTION_PENDING: (PRESCRIPTION_READY,),
    PRESCRIPTION_READY: (),
}


def item_to_dict(item):
    return {
        "medicine_name": item.medicine_name,
        "dosage": item.dosage,
        "quantity": item.quantity,
        "instructions": item.instructions,
    }


def get_prescription_detail(prescription_number, session=None):
    """Consolidated view of one prescription.

    The prescription row is read together with the patient name and the
    diagnosis text; the items are read in a second query keyed by the
    prescription id resolved by the first.
    """
    if session is None:
        session = db.session

    row = (
        session.query(Prescription, Patient.name, Diagnosis.diagnosis)
        .outerjoin(Patient, Prescription.patient_id == Patient.id)
        .outerjoin(Diagnosis, Prescription.diagnosis_id == Diagnosis.id)
        .filter(Prescription.prescription_number == prescription_number)
        .first()
    )
    if row is None:
        raise NotFound("Prescription not found")
    prescription, patient_name, diagnosis_text = row

    items = (
        session.query(PrescriptionItem)
        .filter(PrescriptionItem.prescription_id == prescription.id)
        .order_by(PrescriptionItem.id)
        .all()
    )

    return {
        "prescription_number": prescription.prescription_number,
        "patient_name": patient_name or "Unknown",
        "doctor_name": prescription.doctor_name,
        "diagnosis": diagnosis_text or "No diagnosis",
        "status": prescription.status,
        "created_at": prescription.created_at.isoformat(),
        "items": [item_to_dict(item) for item in items],
    }


def change_status(prescription_number, new_status, session=None):
    if session is None:
        session = db.session

    if new_status not in PRESCRIPTION_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(PRESCRIPTION_STATUSES)}")

    prescription = (
        session.query(Prescription)
        .filter_by(prescription_number=prescription_number)
        .first()
    )
    if prescription is None:
        raise NotFound("Prescription not found")

    if new_status not in TRANSITIONS.get(prescription.status, ()):
        raise InvalidTransition(
            f"Prescription {prescription_number} is {prescription.status}, cannot change to {new_status}")

    previous = prescription.status
    prescription.status = new_status
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.exception("Failed to update status of prescription %s", prescription_number)
        raise BackendError("Failed to process prescription")

    current_app.logger.info("Prescription %s: %s -> %s", prescription_number, previous, new_status)
    return prescription


def mark_ready(prescription_number, session=None):
    """Pharmacist confirmation: pending -> ready."""
    return change_status(prescription_number, PRESCRIPTION_READY, session=session)


def list_prescriptions(status=None, session=None):
    if session is None:
        session = db.session
    query = session.query(Prescription, Patient.name).outerjoin(Patient, Prescription.patient_id == Patient.id)
    if status:
        query = query.filter(Prescription.status == status)
    rows = query.order_by(Prescription.created_at.desc(), Prescription.id.desc()).all()
    return [
        {
            "prescription_number": prescription.prescription_number,
            "patient_name": patient_name or "Unknown",
            "doctor_name": prescription.doctor_name,
            "status": prescription.status,
            "created_at": prescription.created_at.isoformat(),
        }
        for prescription, patient_name in rows
    ]


def prescription_labels(prescription_number, today, session=None):
    if session is None:
        session = db.session
    prescription = (
        session.query(Prescription)
        .filter_by(prescription_number=prescription_number)
        .first()
    )
    if prescription is None:
        raise NotFound("Prescription not found")

    patient = prescription.patient
    labels = []
    for item in prescription.items:
        label_string = (
            f"patient: {patient.name if patient else 'Unknown'}\n"
            f"queue number: {patient.queue_number if patient else '-'}\n"
            f"medicine: {item.medicine_name}\n"
            f"dosage: {item.dosage}\n"
            f"quantity: {item.quantity}\n"
            f"instructions: {item.instructions or '-'}\n"
            f"date: {today.isoformat()}"
        )
        labels.append(label_string)
    return labels


def medicine_statistics(session=None):
    """Number of prescription lines per medicine name."""
    if session is None:
        session = db.session
    rows = (
        session.query(PrescriptionItem.medicine_name, func.count(PrescriptionItem.id))
        .group_by(PrescriptionItem.medicine_name)
        .all()
    )
    return {name: count for name, count in rows}
