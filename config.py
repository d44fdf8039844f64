import os


class Config:
    SECRET_KEY = os.environ.get('CLINIC_SECRET_KEY', 'dev-clinic-secret')

    SQLALCHEMY_DATABASE_URI = os.environ.get('CLINIC_DATABASE_URL', 'sqlite:///clinic.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get('CLINIC_LOG_LEVEL', 'INFO')

    QUEUE_NUMBER_PREFIX = 'A'
    PRESCRIPTION_NUMBER_PREFIX = 'R'


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LOG_LEVEL = 'DEBUG'
