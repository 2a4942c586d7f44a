#!/usr/bin/env python3
"""
Cron script for booking maintenance: closes out past bookings and sends reminders
Run this via cron every 15 minutes: */15 * * * * /path/to/venv/bin/python /path/to/run_booking_cron.py
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.config import load_settings
from scheduling.services.booking_service import BookingService
from scheduling.services.task_queue import TaskQueue
from scheduling.utils.logger import get_logger
from scheduling.database import init_db
from datetime import datetime

logger = get_logger('booking_cron')


def main():
    """Main cron job function"""
    logger.info(f"Starting booking cron job at {datetime.utcnow()}")

    settings = load_settings()
    # Never started: this process exits before background jobs would run,
    # so reminders go out through run_now and failures wait for the next run
    task_queue = TaskQueue(settings)

    try:
        # Initialize database
        init_db()

        booking_service = BookingService(settings, task_queue=task_queue)

        # Close out bookings that have ended
        booking_service.complete_past_bookings()

        # Remind clients of upcoming bookings
        booking_service.run_due_reminders()

        logger.info("Booking cron job completed successfully")

    except Exception as e:
        logger.error(f"Error in booking cron job: {str(e)}")
        raise


if __name__ == "__main__":
    main()
