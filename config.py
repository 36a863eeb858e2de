# config.py
# Environment-driven settings for the Campus Admin application.

import os
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))


def _database_url():
    url = os.environ.get('DATABASE_URL')
    if not url:
        return 'sqlite:///' + os.path.join(basedir, 'data', 'campus.db')
    # Heroku/Render still hand out the old scheme
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-in-production')
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = True

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # --- Object storage (any S3-compatible bucket, e.g. R2 or MinIO) ---
    S3_BUCKET_NAME = os.environ.get('S3_BUCKET_NAME', '')
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL') or None
    S3_REGION = os.environ.get('S3_REGION', 'auto')
    S3_ACCESS_KEY_ID = os.environ.get('S3_ACCESS_KEY_ID')
    S3_SECRET_ACCESS_KEY = os.environ.get('S3_SECRET_ACCESS_KEY')
    S3_PUBLIC_BASE_URL = os.environ.get('S3_PUBLIC_BASE_URL', '')
    MAX_UPLOAD_BYTES = int(os.environ.get('MAX_UPLOAD_BYTES', 50 * 1024 * 1024))
    PRESIGNED_URL_EXPIRY = int(os.environ.get('PRESIGNED_URL_EXPIRY', 3600))

    # --- Report letterhead ---
    INSTITUTION_NAME = os.environ.get('INSTITUTION_NAME', 'Campus Admin University')
    INSTITUTION_ADDRESS = os.environ.get('INSTITUTION_ADDRESS', 'P.O. Box 0000, Nairobi')
    INSTITUTION_CONTACT = os.environ.get('INSTITUTION_CONTACT', 'info@campus.example')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    PREFERRED_URL_SCHEME = 'https'
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 1800,
    }


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WTF_CSRF_ENABLED = False
    S3_BUCKET_NAME = 'test-bucket'
    S3_PUBLIC_BASE_URL = 'https://files.test'


config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
}


def get_config():
    return config_by_name.get(os.environ.get('APP_ENV', 'development'), DevelopmentConfig)
