"""
Configuration module for Webinar Engine Backend
Centralizes all environment variables and settings
"""
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'webinars')

# Storage backend: 'mongo' (default) or 'memory' (single process, local runs)
STORE_BACKEND = os.environ.get('STORE_BACKEND', 'mongo')

# JWT
SECRET_KEY = os.environ.get('SECRET_KEY', 'webinar-engine-secret-key-change-in-production')
ALGORITHM = "HS256"

# CORS
CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Environment
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'development')  # 'development' or 'production'
IS_PRODUCTION = ENVIRONMENT == 'production'

# Rate Limiting
RATE_LIMIT_REGISTRATION = os.environ.get('RATE_LIMIT_REGISTRATION', '20/minute')

# Frontend URL (for join links in notifications)
CLIENT_URL = os.environ.get('CLIENT_URL', 'http://localhost:3000')
WEBINAR_JOIN_PATH = os.environ.get('WEBINAR_JOIN_PATH', '/royal-tv/{slug}/user?is_user=true')

# Amazon SES
AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'no-reply@example.com')
SENDER_NAME = os.environ.get('SENDER_NAME', 'Webinars')

# Notification templates (SES template names)
REMINDER_TEMPLATE_ID = os.environ.get('REMINDER_TEMPLATE_ID', '')
CONFIRMATION_TEMPLATE_ID = os.environ.get('CONFIRMATION_TEMPLATE_ID', '')

# Reminder scheduler
REMINDER_LEAD_MINUTES = int(os.environ.get('REMINDER_LEAD_MINUTES', '15'))
REMINDER_TOLERANCE_SECONDS = int(os.environ.get('REMINDER_TOLERANCE_SECONDS', '60'))
REMINDER_SWEEP_INTERVAL_SECONDS = int(os.environ.get('REMINDER_SWEEP_INTERVAL_SECONDS', '60'))
REMINDER_TIMEZONE = os.environ.get('REMINDER_TIMEZONE', 'America/New_York')
SYNC_AUDIENCE_AFTER_REMINDER = os.environ.get('SYNC_AUDIENCE_AFTER_REMINDER', 'false').lower() == 'true'

# HubSpot
HUBSPOT_TOKEN = os.environ.get('HUBSPOT_TOKEN', '')
HUBSPOT_API_BASE = os.environ.get('HUBSPOT_API_BASE', 'https://api.hubapi.com/crm/v3')

# Webinars
DEFAULT_CAPACITY = int(os.environ.get('DEFAULT_CAPACITY', '100'))
