from __future__ import annotations

from datetime import datetime, time, timedelta
from decimal import Decimal

from zefit import init_db
from zefit.auth_service import create_staff_user
from zefit.calendar_window import get_monday
from zefit.models.base import get_session
from zefit.models.content import Post
from zefit.models.member import Member, MembershipPeriod, MembershipType, Visit
from zefit.models.payment import Payment
from zefit.models.scheduling import SessionRosterEntry, Trainer, TrainingSession

DEMO_ADMIN_EMAIL = "admin@zefit.ba"
DEMO_ADMIN_PASSWORD = "admin123"


def clear_all_data() -> None:
    """Drop and recreate all tables."""
    init_db.drop_db()
    init_db.init_db()


def seed_demo_data() -> None:
    """Seed the database with a consistent demo data set."""
    clear_all_data()
    now = datetime.now().replace(second=0, microsecond=0)
    today = now.date()
    with get_session() as session:
        create_staff_user(session, email=DEMO_ADMIN_EMAIL, password=DEMO_ADMIN_PASSWORD)

        # Membership types
        type_specs = [
            ("Monthly", 30, Decimal("40.00")),
            ("Quarterly", 90, Decimal("110.00")),
            ("Student monthly", 30, Decimal("30.00")),
            ("Day pass", 1, Decimal("5.00")),
        ]
        types = []
        for name, days, price in type_specs:
            membership_type = MembershipType(name=name, default_duration_days=days, default_price=price)
            session.add(membership_type)
            types.append(membership_type)
        session.flush()

        # Members: (name, phone, email, days since registration, type index)
        member_specs = [
            ("Ana Anić", "061 111 222", "ana@example.com", 40, 0),
            ("Marko Marić", "062 333 444", "marko@example.com", 25, 1),
            ("Ivana Ivić", "063 555 666", "ivana@example.com", 12, 2),
            ("Haris Hodžić", "061 777 888", None, 5, 0),
            ("Lejla Lukić", None, "lejla@example.com", 2, 0),
            ("Tarik Tahić", "062 999 000", "tarik@example.com", 60, 1),
        ]
        members = []
        for index, (full_name, phone, email, age_days, type_index) in enumerate(member_specs, start=1):
            member = Member(
                card_code=f"ZF{index:06d}",
                full_name=full_name,
                phone=phone,
                email=email,
                status="active",
                created_at=now - timedelta(days=age_days),
            )
            session.add(member)
            session.flush()
            members.append(member)

            membership_type = types[type_index]
            start = (now - timedelta(days=age_days)).date()
            period = MembershipPeriod(
                member_id=member.member_id,
                type_id=membership_type.type_id,
                price=membership_type.default_price,
                start_date=start,
                end_date=start + timedelta(days=membership_type.default_duration_days),
                status="active",
            )
            session.add(period)
            session.flush()
            session.add(
                Payment(
                    member_id=member.member_id,
                    period_id=period.period_id,
                    amount=period.price,
                    payment_date=datetime.combine(start, time(12, 0)),
                )
            )

        # Visits over the last two weeks; the first two members are still inside
        for offset in range(14):
            day = today - timedelta(days=offset)
            for position, member in enumerate(members):
                if (offset + position) % 3 == 0:
                    arrival = datetime.combine(day, time(7 + position, 15))
                    session.add(
                        Visit(
                            member_id=member.member_id,
                            arrival_time=arrival,
                            departure_time=arrival + timedelta(minutes=75),
                        )
                    )
        for member in members[:2]:
            session.add(Visit(member_id=member.member_id, arrival_time=now - timedelta(minutes=20)))

        # Trainers and this week's sessions
        trainers = [Trainer(member_id=members[5].member_id, note="Strength"),
                    Trainer(member_id=members[1].member_id, note="Mobility")]
        session.add_all(trainers)
        session.flush()

        monday = get_monday(now)
        session_specs = [
            (trainers[0], "Strength basics", 0, time(9, 0)),
            (trainers[0], "Strength basics", 2, time(9, 0)),
            (trainers[1], "Mobility flow", 1, time(18, 0)),
            (trainers[1], "Mobility flow", 3, time(18, 0)),
        ]
        sessions = []
        for trainer, title, weekday, start_at in session_specs:
            start = datetime.combine((monday + timedelta(days=weekday)).date(), start_at)
            training = TrainingSession(
                trainer_id=trainer.trainer_id,
                title=title,
                start_time=start,
                end_time=start + timedelta(minutes=60),
            )
            session.add(training)
            sessions.append(training)
        session.flush()

        for training, roster in zip(sessions, [members[0:2], members[0:1], members[2:5], members[3:4]]):
            for member in roster:
                session.add(
                    SessionRosterEntry(
                        session_id=training.session_id,
                        member_id=member.member_id,
                        status="enrolled",
                    )
                )

        session.add_all(
            [
                Post(title="New opening hours", content="From Monday we open at 6:00."),
                Post(title="Mobility class", content="Every Tuesday and Thursday at 18:00."),
            ]
        )
        session.commit()
