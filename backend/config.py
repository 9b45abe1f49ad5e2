from dotenv import load_dotenv
from pathlib import Path
import os

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection (replica set required for transactions)
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
DB_NAME = os.environ.get('DB_NAME', 'project_finance')

# JWT
JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'your-secret-key-change-in-production-2024')
JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')

# Atomic units
TRANSACTION_TIMEOUT_SECONDS = float(os.environ.get('TRANSACTION_TIMEOUT_SECONDS', '10'))
TRANSACTION_MAX_ATTEMPTS = int(os.environ.get('TRANSACTION_MAX_ATTEMPTS', '3'))

# HTTP
CORS_ORIGINS = [origin.strip() for origin in os.environ.get('CORS_ORIGINS', '*').split(',') if origin.strip()]

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
