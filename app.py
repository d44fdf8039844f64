from flask import Blueprint, Flask, current_app, request, jsonify
from flask.cli import with_appcontext
from werkzeug.security import generate_password_hash
from sqlalchemy.exc import SQLAlchemyError
import click
import datetime

from auth import auth_bp, current_principal, login_required, role_required
from config import Config
from errors import ClinicError, NotFound, ValidationError
from extensions import db
from models import Diagnosis, Patient, Profile, UserRole
import pharmacy
import visits

clinic_bp = Blueprint('clinic', __name__)


def patient_to_dict(patient):
    return {
        "id": patient.id,
        "queue_number": patient.queue_number,
        "name": patient.name,
        "age": patient.age,
        "phone": patient.phone,
        "complaint": patient.complaint,
        "appointment_time": patient.appointment_time.isoformat() if patient.appointment_time else None,
        "status": patient.status,
        "created_at": patient.created_at.isoformat(),
    }


def diagnosis_to_dict(diagnosis):
    return {
        "id": diagnosis.id,
        "patient_id": diagnosis.patient_id,
        "doctor_id": diagnosis.doctor_id,
        "doctor_name": diagnosis.doctor_name,
        "diagnosis": diagnosis.diagnosis,
        "symptoms": diagnosis.symptoms,
        "notes": diagnosis.notes,
        "created_at": diagnosis.created_at.isoformat(),
    }


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be JSON")
    return data


# --- Intake ---

@clinic_bp.route('/patients', methods=['POST'])
@login_required
def register_patient():
    fields = visits.parse_patient_fields(_json_body())
    patient = visits.create_patient(fields)
    return jsonify({"message": "Patient registered", "patient": patient_to_dict(patient)}), 201


@clinic_bp.route('/patients', methods=['GET'])
@login_required
def list_patients():
    query = Patient.query
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    patients = query.order_by(Patient.created_at, Patient.id).all()
    return jsonify([patient_to_dict(p) for p in patients]), 200


@clinic_bp.route('/patients/<int:patient_id>', methods=['GET'])
@login_required
def get_patient(patient_id):
    patient = db.session.get(Patient, patient_id)
    if not patient:
        raise NotFound("Patient not found")
    return jsonify(patient_to_dict(patient)), 200


@clinic_bp.route('/patients/<int:patient_id>/status', methods=['PUT'])
@login_required
def update_patient_status(patient_id):
    patient = visits.update_patient_status(patient_id, _json_body().get('status'))
    return jsonify({"message": "Patient status updated", "patient": patient_to_dict(patient)}), 200


@clinic_bp.route('/patients/<int:patient_id>/diagnoses', methods=['GET'])
@login_required
def list_patient_diagnoses(patient_id):
    if db.session.get(Patient, patient_id) is None:
        raise NotFound("Patient not found")
    diagnoses = (
        Diagnosis.query.filter_by(patient_id=patient_id)
        .order_by(Diagnosis.created_at.desc(), Diagnosis.id.desc())
        .all()
    )
    return jsonify([diagnosis_to_dict(d) for d in diagnoses]), 200


# --- Examination ---

@clinic_bp.route('/examinations', methods=['POST'])
@role_required('doctor')
def submit_examination():
    data = _json_body()
    record = visits.create_visit_record(
        current_principal(),
        diagnosis=data.get('diagnosis'),
        symptoms=data.get('symptoms'),
        notes=data.get('notes'),
        medicines=data.get('medicines'),
        patient_id=data.get('patient_id'),
        patient=data.get('patient'),
    )

    prescription = None
    if record.prescription is not None:
        prescription = {
            "id": record.prescription.id,
            "prescription_number": record.prescription.prescription_number,
            "status": record.prescription.status,
            "items": [pharmacy.item_to_dict(item) for item in record.prescription.items],
        }
    return jsonify({
        "message": "Examination saved",
        "patient": patient_to_dict(record.patient),
        "diagnosis": diagnosis_to_dict(record.diagnosis),
        "prescription": prescription,
    }), 201


# --- Fulfillment ---

@clinic_bp.route('/prescriptions', methods=['GET'])
@login_required
def list_prescriptions():
    return jsonify(pharmacy.list_prescriptions(status=request.args.get('status'))), 200


@clinic_bp.route('/prescriptions/<prescription_number>', methods=['GET'])
@login_required
def get_prescription(prescription_number):
    return jsonify(pharmacy.get_prescription_detail(prescription_number)), 200


@clinic_bp.route('/prescriptions/<prescription_number>/status', methods=['PUT'])
@role_required('pharmacist')
def update_prescription_status(prescription_number):
    new_status = _json_body().get('status')
    if not new_status:
        raise ValidationError("New status is required")

    pharmacy.change_status(prescription_number, new_status)
    return jsonify({
        "message": "Prescription status updated successfully",
        "prescription": pharmacy.get_prescription_detail(prescription_number),
    }), 200


@clinic_bp.route('/prescriptions/<prescription_number>/label', methods=['GET'])
@role_required('pharmacist')
def get_prescription_label(prescription_number):
    labels = pharmacy.prescription_labels(prescription_number, datetime.date.today())
    return jsonify({
        "prescription_number": prescription_number,
        "labels": labels
    }), 200


@clinic_bp.route('/dashboard/notifications', methods=['GET'])
@role_required('pharmacist')
def get_dashboard_notifications():
    return jsonify(pharmacy.list_prescriptions(status='pending')), 200


@clinic_bp.route('/dashboard/statistics/medicines', methods=['GET'])
@login_required
def get_medicine_statistics():
    return jsonify(pharmacy.medicine_statistics()), 200


# --- CLI ---

DEMO_USERS = (
    ('doctor', 'doctorpass', 'Dr. Amanda Wijaya', 'doctor'),
    ('pharmacist', 'pharmacypass', 'Budi Santoso', 'pharmacist'),
    ('admin', 'adminpass', 'Clinic Admin', 'admin'),
)


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables."""
    db.create_all()
    click.echo("Database tables created.")


@click.command('seed')
@with_appcontext
def seed_command():
    """Create demo staff accounts if they do not exist."""
    db.create_all()
    for username, password, full_name, role in DEMO_USERS:
        if Profile.query.filter_by(username=username).first():
            continue
        profile = Profile(
            username=username,
            password_hash=generate_password_hash(password),
            full_name=full_name,
        )
        profile.roles.append(UserRole(role=role))
        db.session.add(profile)
        click.echo(f"Created {role} account '{username}'.")
    db.session.commit()


def handle_clinic_error(error):
    return jsonify({"message": error.message}), error.status_code


def handle_database_error(error):
    db.session.rollback()
    current_app.logger.error("Database error while handling %s %s", request.method, request.path, exc_info=error)
    return jsonify({"message": "The clinic database is unavailable, please try again"}), 500


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(clinic_bp)
    app.register_error_handler(ClinicError, handle_clinic_error)
    app.register_error_handler(SQLAlchemyError, handle_database_error)

    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_command)
    return app


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
    app.run(debug=True)
