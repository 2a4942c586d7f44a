#!/usr/bin/env python3
"""
Script to seed the database with sample providers, schedules and event types
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
from datetime import date, time, timedelta
from scheduling.database import init_db, drop_db, get_db
from scheduling.models import (Member, Schedule, WeeklyAvailability, DateOverride,
                               EventType, BookingQuestion)
from scheduling.models.event_type import QuestionType

WEEKDAYS = [1, 2, 3, 4, 5]  # Monday to Friday


def create_members(db):
    """Create sample providers"""
    members = []
    for i, (first, last, slug) in enumerate([
        ('Lucia', 'Ramirez', 'lucia-ramirez'),
        ('Diego', 'Torres', 'diego-torres'),
    ]):
        member = Member(
            first_name=first,
            last_name=last,
            email=f'{slug}@slotbook.app',
            phone=f'+5199900000{i}',
            booking_slug=slug,
            active=True,
            accepts_bookings=True
        )
        db.add(member)
        members.append(member)

    db.commit()
    return members


def create_schedules(db, members):
    """Weekday office hours with a lunch break"""
    for member in members:
        schedule = Schedule(
            member_id=member.id,
            name='Office hours',
            timezone='America/Lima',
            is_default=True
        )
        for day in WEEKDAYS:
            schedule.availabilities.append(
                WeeklyAvailability(day_of_week=day, start_time=time(9, 0), end_time=time(13, 0))
            )
            schedule.availabilities.append(
                WeeklyAvailability(day_of_week=day, start_time=time(14, 0), end_time=time(18, 0))
            )
        db.add(schedule)

        # Block next week's Friday and shorten the Monday after it
        today = date.today()
        next_friday = today + timedelta(days=(4 - today.weekday()) % 7 + 7)
        db.add(DateOverride(member_id=member.id, date=next_friday, unavailable=True,
                            reason='Conference'))
        db.add(DateOverride(member_id=member.id, date=next_friday + timedelta(days=3),
                            start_time=time(10, 0), end_time=time(12, 0),
                            reason='Half day'))

    db.commit()


def create_event_types(db, members):
    """A free intro call and a paid session per provider"""
    count = 0
    for member in members:
        intro = EventType(
            member_id=member.id,
            title='Intro call',
            slug='intro-call',
            description='A short first conversation',
            duration_minutes=30,
            minimum_notice_hours=2,
            maximum_days_in_future=60,
            cancellation_policy_hours=0,
            rescheduling_policy_hours=0
        )
        session = EventType(
            member_id=member.id,
            title='Consultation',
            slug='consultation',
            description='One hour paid consultation',
            duration_minutes=60,
            buffer_before_minutes=10,
            buffer_after_minutes=15,
            minimum_notice_hours=24,
            maximum_days_in_future=90,
            price_cents=15000,
            price_currency='PEN',
            requires_payment=True,
            payment_required_to_book=True,
            cancellation_policy_hours=24,
            rescheduling_policy_hours=12
        )
        session.booking_questions.append(BookingQuestion(
            label='What would you like to discuss?',
            question_type=QuestionType.TEXTAREA.value,
            required=True,
            position=0
        ))
        session.booking_questions.append(BookingQuestion(
            label='Preferred language',
            question_type=QuestionType.SELECT.value,
            required=False,
            position=1,
            options=json.dumps(['Spanish', 'English'])
        ))
        db.add_all([intro, session])
        count += 2

    db.commit()
    return count


def main():
    """Main seeding function"""
    print("Dropping existing database...")
    drop_db()

    print("Initializing new database...")
    init_db()

    # Use a single session for all operations
    with get_db() as db:
        print("Creating providers...")
        members = create_members(db)

        print("Creating schedules...")
        create_schedules(db, members)

        print("Creating event types...")
        event_type_count = create_event_types(db, members)

        slugs = [member.booking_slug for member in members]

    print("\nDatabase seeded successfully!")
    print(f"Created:")
    print(f"- {len(slugs)} Providers ({', '.join(slugs)})")
    print(f"- Weekday schedules with two date overrides each")
    print(f"- {event_type_count} Event types")

    print("\nTry: GET /api/book/lucia-ramirez")


if __name__ == "__main__":
    main()
