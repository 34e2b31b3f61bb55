import os


def _flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # development | production
    GAMBIT_PROFILE = os.environ.get('GAMBIT_PROFILE', 'development')
    # 32-byte key for secret escrow (hex, base64 or raw). Generate with `flask gen-key`.
    MASTER_KEY = os.environ.get('MASTER_KEY')
    # Random in-memory key when MASTER_KEY is missing; never in production
    ALLOW_EPHEMERAL_KEY = _flag('ALLOW_EPHEMERAL_KEY', GAMBIT_PROFILE != 'production')
    ROOM_CODE_LENGTH = int(os.environ.get('ROOM_CODE_LENGTH', '4'))
    ROOM_CODE_MAX_ATTEMPTS = int(os.environ.get('ROOM_CODE_MAX_ATTEMPTS', '16'))
    # Base delay between code collision retries (ms), doubled per attempt
    ROOM_CODE_BACKOFF_MS = int(os.environ.get('ROOM_CODE_BACKOFF_MS', '5'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    CORS_ORIGINS = [o for o in os.environ.get('CORS_ORIGINS', '').split(',') if o] or [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
