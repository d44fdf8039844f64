import datetime
import unittest
from unittest import mock

from werkzeug.security import generate_password_hash

from app import create_app
from config import TestConfig
from errors import BackendError, InvalidTransition, NotFound, ValidationError
from extensions import db
from models import Diagnosis, Patient, Prescription, PrescriptionItem, Profile, UserRole
import pharmacy
import visits


class VisitRecordTests(unittest.TestCase):

    def setUp(self):
        self.app = create_app(TestConfig)
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()

        self.doctor = Profile(username='testdoc', full_name='Dr. Amanda Wijaya',
                              password_hash=generate_password_hash('doctorpass'))
        self.doctor.roles.append(UserRole(role='doctor'))
        self.patient = Patient(queue_number='A-025', name='Jane Smith', age=28, status='waiting')
        db.session.add_all([self.doctor, self.patient])
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def counts(self):
        return (Patient.query.count(), Diagnosis.query.count(),
                Prescription.query.count(), PrescriptionItem.query.count())

    def test_rejects_empty_diagnosis(self):
        with self.assertRaises(ValidationError):
            visits.create_visit_record(self.doctor, diagnosis='', patient_id=self.patient.id)
        with self.assertRaises(ValidationError):
            visits.create_visit_record(self.doctor, diagnosis=None, patient={'name': 'John Doe'})
        self.assertEqual(self.counts(), (1, 0, 0, 0))

    def test_requires_patient_reference(self):
        with self.assertRaisesRegex(ValidationError, 'patient_id or patient details'):
            visits.create_visit_record(self.doctor, diagnosis='Flu')

    def test_unknown_patient(self):
        with self.assertRaises(NotFound):
            visits.create_visit_record(self.doctor, diagnosis='Flu', patient_id=404)

    def test_common_cold_example(self):
        record = visits.create_visit_record(
            self.doctor,
            diagnosis='Common cold',
            medicines=[{'medicine_name': 'Paracetamol', 'dosage': '500mg',
                        'quantity': 10, 'instructions': '3x daily'}],
            patient_id=self.patient.id,
        )

        self.assertEqual(record.patient.id, self.patient.id)
        self.assertEqual(record.diagnosis.patient_id, self.patient.id)
        self.assertEqual(record.prescription.diagnosis_id, record.diagnosis.id)
        self.assertEqual(record.prescription.patient_id, self.patient.id)
        self.assertEqual(len(record.prescription.items), 1)
        item = record.prescription.items[0]
        self.assertEqual((item.medicine_name, item.dosage, item.quantity, item.instructions),
                         ('Paracetamol', '500mg', 10, '3x daily'))

    def test_no_medicines_no_prescription(self):
        record = visits.create_visit_record(self.doctor, diagnosis='Sprained ankle',
                                            patient={'name': 'John Doe', 'queue_number': 'A-026'})
        self.assertIsNone(record.prescription)
        self.assertEqual(record.patient.status, 'examined')
        self.assertEqual(self.counts(), (2, 1, 0, 0))

    def test_duplicate_prescription_number_rolls_back_everything(self):
        visits.create_visit_record(self.doctor, diagnosis='Flu', patient_id=self.patient.id,
                                   medicines=[{'medicine_name': 'Oseltamivir', 'dosage': '75mg'}])
        existing_number = Prescription.query.one().prescription_number
        other = Patient(queue_number='A-026', name='John Doe', status='waiting')
        db.session.add(other)
        db.session.commit()
        before = self.counts()

        with mock.patch('visits.generate_prescription_number', return_value=existing_number), \
                self.assertLogs(self.app.logger, level='ERROR'):
            with self.assertRaises(BackendError):
                visits.create_visit_record(self.doctor, diagnosis='Flu', patient_id=other.id,
                                           medicines=[{'medicine_name': 'Oseltamivir', 'dosage': '75mg'}])

        self.assertEqual(self.counts(), before)
        db.session.expire_all()
        self.assertEqual(db.session.get(Patient, other.id).status, 'waiting')

    def test_parse_medicines_defaults_and_errors(self):
        items = visits.parse_medicines([
            {'medicine_name': ' Paracetamol ', 'dosage': '500mg', 'quantity': '10'},
            {'medicine_name': 'Zinc', 'dosage': '20mg', 'instructions': ''},
        ])
        self.assertEqual(items[0]['medicine_name'], 'Paracetamol')
        self.assertEqual(items[0]['quantity'], 10)
        self.assertEqual(items[1]['quantity'], 1)
        self.assertIsNone(items[1]['instructions'])

        self.assertEqual(visits.parse_medicines(None), [])
        with self.assertRaises(ValidationError):
            visits.parse_medicines({'medicine_name': 'Zinc'})
        with self.assertRaises(ValidationError):
            visits.parse_medicines([{'medicine_name': 'Zinc', 'dosage': '20mg', 'quantity': 0}])
        with self.assertRaises(ValidationError):
            visits.parse_medicines([{'medicine_name': 'Zinc', 'dosage': '20mg', 'quantity': 'many'}])

    def test_parse_patient_fields(self):
        fields = visits.parse_patient_fields({'name': 'John Doe', 'age': '41', 'phone': ' 0812 '})
        self.assertEqual(fields['age'], 41)
        self.assertEqual(fields['phone'], '0812')
        self.assertIsNone(fields['queue_number'])
        with self.assertRaises(ValidationError):
            visits.parse_patient_fields({'name': 'John Doe', 'age': -1})
        with self.assertRaises(ValidationError):
            visits.parse_patient_fields({'name': 'John Doe', 'appointment_time': 'tomorrow'})

    def test_whole_number_fields_reject_fractions(self):
        with self.assertRaisesRegex(ValidationError, 'quantity must be a whole number'):
            visits.parse_medicines([{'medicine_name': 'Zinc', 'dosage': '20mg', 'quantity': 2.7}])
        with self.assertRaisesRegex(ValidationError, 'Age must be a whole number'):
            visits.parse_patient_fields({'name': 'John Doe', 'age': 41.9})
        items = visits.parse_medicines([{'medicine_name': 'Zinc', 'dosage': '20mg', 'quantity': 3.0}])
        self.assertEqual(items[0]['quantity'], 3)

    def test_text_fields_reject_other_json_types(self):
        with self.assertRaisesRegex(ValidationError, 'Patient name must be text'):
            visits.parse_patient_fields({'name': ['John', 'Doe']})
        with self.assertRaisesRegex(ValidationError, 'Medicine #1: dosage must be text'):
            visits.parse_medicines([{'medicine_name': 'Zinc', 'dosage': 20}])
        with self.assertRaisesRegex(ValidationError, 'Symptoms must be text'):
            visits.create_visit_record(self.doctor, diagnosis='Flu', symptoms={'fever': True},
                                       patient_id=self.patient.id)
        self.assertEqual(self.counts(), (1, 0, 0, 0))
        with self.assertRaises(ValidationError):
            visits.update_patient_status(self.patient.id, 42)

    def test_queue_numbers_follow_todays_intake(self):
        self.assertEqual(visits.next_queue_number(db.session, 'A'), 'A-002')
        patient = visits.create_patient({'name': 'John Doe'})
        self.assertEqual(patient.queue_number, 'A-002')
        self.assertEqual(patient.status, 'waiting')

    def test_prescription_number_format(self):
        number = visits.generate_prescription_number('R', today=datetime.date(2026, 10, 17))
        self.assertRegex(number, r'^R-261017-[0-9A-F]{6}$')
        self.assertNotEqual(number, visits.generate_prescription_number('R', today=datetime.date(2026, 10, 17)))


class PharmacyTests(unittest.TestCase):

    def setUp(self):
        self.app = create_app(TestConfig)
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()

        doctor = Profile(username='testdoc', full_name='Dr. Amanda Wijaya',
                         password_hash=generate_password_hash('doctorpass'))
        patient = Patient(queue_number='A-025', name='Jane Smith', status='waiting')
        db.session.add_all([doctor, patient])
        db.session.commit()
        record = visits.create_visit_record(
            doctor, diagnosis='Common cold', patient_id=patient.id,
            medicines=[{'medicine_name': 'Paracetamol', 'dosage': '500mg', 'quantity': 10},
                       {'medicine_name': 'Zinc', 'dosage': '20mg', 'quantity': 5}])
        self.number = record.prescription.prescription_number

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def test_detail(self):
        detail = pharmacy.get_prescription_detail(self.number)
        self.assertEqual(detail['patient_name'], 'Jane Smith')
        self.assertEqual(detail['doctor_name'], 'Dr. Amanda Wijaya')
        self.assertEqual(detail['diagnosis'], 'Common cold')
        self.assertEqual([i['medicine_name'] for i in detail['items']], ['Paracetamol', 'Zinc'])

    def test_detail_unknown_number(self):
        with self.assertRaises(NotFound):
            pharmacy.get_prescription_detail('R-000000-XXXXXX')

    def test_mark_ready_once(self):
        prescription = pharmacy.mark_ready(self.number)
        self.assertEqual(prescription.status, 'ready')
        with self.assertRaises(InvalidTransition):
            pharmacy.mark_ready(self.number)

    def test_change_status_unknown_value(self):
        with self.assertRaises(ValidationError):
            pharmacy.change_status(self.number, 'lost')
        self.assertEqual(pharmacy.get_prescription_detail(self.number)['status'], 'pending')

    def test_status_vocabulary_enforced_on_model(self):
        prescription = Prescription.query.one()
        with self.assertRaises(ValueError):
            prescription.status = 'dispatched'

    def test_labels(self):
        labels = pharmacy.prescription_labels(self.number, datetime.date(2026, 10, 17))
        self.assertEqual(len(labels), 2)
        self.assertIn("medicine: Zinc", labels[1])
        self.assertIn("date: 2026-10-17", labels[1])


if __name__ == '__main__':
    unittest.main()
