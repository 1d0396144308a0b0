from datetime import datetime, timedelta

from sqlmodel import Session #type: ignore

from elibrary import repositories as repo
from elibrary.database import utcnow
from elibrary.schemas import AddBookEvent, BorrowEvent, DashboardStats, RegisterEvent

PENDING_RETURN_WINDOW = timedelta(days=3)
RECENT_BORROWS = 5
RECENT_USERS = 3
RECENT_BOOKS = 2
ACTIVITY_LIMIT = 10


def time_ago(timestamp: datetime, now: datetime) -> str:
    elapsed = now - timestamp
    minutes = elapsed.total_seconds() / 60
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{int(minutes)} minutes ago"
    if minutes < 60 * 24:
        return f"{int(minutes // 60)} hours ago"
    return f"{elapsed.days} days ago"


def stats(session: Session) -> DashboardStats:
    return DashboardStats(
        total_users=repo.count_users(session),
        total_books=repo.count_books(session),
        active_borrows=repo.count_active_loans(session),
        pending_returns=repo.count_loans_due_by(session, utcnow() + PENDING_RETURN_WINDOW),
    )


def recent_activity(session: Session) -> list[BorrowEvent | RegisterEvent | AddBookEvent]:
    """Latest borrows, registrations and book additions, newest first.

    Entries are ordered on their timestamps and only then given a
    human-readable ``time`` label.
    """
    events: list[BorrowEvent | RegisterEvent | AddBookEvent] = []
    for loan in repo.recent_loans(session, RECENT_BORROWS):
        if loan.user is None or loan.book is None:
            continue
        events.append(BorrowEvent(id=loan.id, user=loan.user.name, book=loan.book.title, timestamp=loan.borrowed_at))
    for user in repo.recent_users(session, RECENT_USERS):
        events.append(RegisterEvent(id=user.id, user=user.name, timestamp=user.created_at))
    for book in repo.recent_books(session, RECENT_BOOKS):
        events.append(AddBookEvent(id=book.id, book=book.title, timestamp=book.created_at))

    events.sort(key=lambda event: event.timestamp, reverse=True)
    events = events[:ACTIVITY_LIMIT]
    now = utcnow()
    for event in events:
        event.time = time_ago(event.timestamp, now)
    return events
