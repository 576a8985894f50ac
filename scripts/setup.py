#!/usr/bin/env python3
"""Setup script for the tour slot booking API: migrate and seed a sample tour."""

import asyncio
import logging
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from tourslots.core.database import async_session_factory, close_db
from tourslots.schemas.tour import CreateTourRequest
from tourslots.services.tour_service import TourService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_TOUR = {
    "name": "Kyoto Tea Ceremony Experience",
    "slug": "kyoto-tea-ceremony",
    "description": "A private tea ceremony in a machiya townhouse with a licensed tea master",
    "price": {"amount": 8000, "currency": "JPY"},
    "discounted_price_amount": 7200,
    "time_slots": [
        {"start_time": "09:00", "end_time": "10:30", "max_capacity": 10},
        {"start_time": "11:00", "end_time": "12:30", "max_capacity": 10},
        {"start_time": "14:00", "end_time": "15:30", "max_capacity": 8},
        {"start_time": "16:00", "end_time": "17:30", "max_capacity": 8, "is_active": False},
    ],
    "operating_days": ["tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"],
    "advance_booking_days": 1,
}


def run_migrations() -> None:
    """Upgrade the database schema to the latest revision."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create a sample tour with its slot catalog unless it already exists."""
    request = CreateTourRequest.model_validate(SAMPLE_TOUR)

    async with async_session_factory() as db:
        tour_service = TourService(db)
        if await tour_service.get_tour_by_slug(request.slug):
            logger.info("Sample data already exists, skipping...")
            return

        tour = await tour_service.create_tour(request)
        logger.info(f"Created sample tour {tour.slug} ({tour.id}) with {len(tour.slots)} slots")

    await close_db()


def main() -> None:
    """Main setup function."""
    logger.info("Starting tour slot booking API setup...")

    # Alembic's env.py drives its own event loop, so migrate before seeding
    run_migrations()
    asyncio.run(create_sample_data())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn tourslots.main:app --reload")


if __name__ == "__main__":
    main()
