import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from medislot.core import config
from medislot.core.logging import configure_logging
from medislot.database import Base, engine, ensure_appointment_schema, ensure_slot_schema
from medislot.models import appointment, settlement, slot, user  # noqa: F401
from medislot.routes import appointment_routes, auth_routes, slot_routes

configure_logging()
config.validate_runtime_config()

app = FastAPI(title='medislot')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_slot_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'Appointment API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(slot_routes.router, prefix='/slots')
app.include_router(appointment_routes.router, prefix='/appointments')
