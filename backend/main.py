import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_scheduling_schema
from backend.models import appointment, calendar_account  # noqa: F401
from backend.routes import admin_routes, auth_routes, function_call_routes
from backend.services import calendar_gateway
from backend.services.token_manager import token_manager

logging.basicConfig(
    level=logging.INFO if config.APP_ENV.lower() == 'production' else logging.DEBUG,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
)

app = FastAPI(title='Service Appointment Scheduler')

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
def close_http_clients() -> None:
    calendar_gateway.calendar_http_client.close()
    token_manager.close()


@app.get('/')
def root():
    return {'status': 'Scheduling API Running'}


@app.get('/health')
def health():
    return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()}


app.include_router(auth_routes.router, prefix='/auth/google')
app.include_router(admin_routes.router, prefix='/admin')
app.include_router(function_call_routes.router, prefix='/webhooks/vapi')
