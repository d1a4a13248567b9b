"""Dashboard counters and revenue / top-N reports.

Each report is a single grouped query.  Top-N lists are ordered by their
measure descending, then by id ascending so ties come out the same way on
every run.
"""

from collections import namedtuple
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func

from models import db, Car, Customer, Rental, money


TIMEFRAMES = (7, 30, 90, 365)
DEFAULT_TIMEFRAME = 30
TOP_N = 5

CarStat = namedtuple('CarStat', 'car rental_count')
CustomerStat = namedtuple('CustomerStat', 'customer rental_count total_spent')


def report_cutoff(days: int, today: Optional[date] = None) -> date:
    """First rental date included in a report covering the last ``days`` days."""
    today = today or date.today()
    return today - timedelta(days=days)


def total_cars() -> int:
    return Car.query.count()


def available_cars() -> int:
    return Car.query.filter_by(status='Available').count()


def ongoing_rentals() -> int:
    return Rental.query.filter_by(status='Ongoing').count()


def revenue(cutoff: date):
    """Sum of total cost over Completed rentals starting on or after ``cutoff``."""
    total = (db.session.query(func.coalesce(func.sum(Rental.total_cost), 0))
             .filter(Rental.status == 'Completed', Rental.rental_date >= cutoff)
             .scalar())
    return money(total)


def top_cars(cutoff: date, limit: int = TOP_N):
    """Most rented cars among non-cancelled rentals since ``cutoff``."""
    rental_count = func.count(Rental.rental_id).label('rental_count')
    rows = (db.session.query(Car, rental_count)
            .join(Rental, Rental.car_id == Car.car_id)
            .filter(Rental.status != 'Cancelled', Rental.rental_date >= cutoff)
            .group_by(Car.car_id)
            .order_by(rental_count.desc(), Car.car_id.asc())
            .limit(limit)
            .all())
    return [CarStat(car, count) for car, count in rows]


def top_customers(cutoff: date, limit: int = TOP_N):
    """Customers who spent the most on non-cancelled rentals since ``cutoff``."""
    rental_count = func.count(Rental.rental_id).label('rental_count')
    total_spent = func.sum(Rental.total_cost).label('total_spent')
    rows = (db.session.query(Customer, rental_count, total_spent)
            .join(Rental, Rental.customer_id == Customer.customer_id)
            .filter(Rental.status != 'Cancelled', Rental.rental_date >= cutoff)
            .group_by(Customer.customer_id)
            .order_by(total_spent.desc(), Customer.customer_id.asc())
            .limit(limit)
            .all())
    return [CustomerStat(customer, count, money(spent)) for customer, count, spent in rows]


def summary(days: int = DEFAULT_TIMEFRAME, today: Optional[date] = None) -> dict:
    """Everything the dashboard shows for the chosen timeframe."""
    cutoff = report_cutoff(days, today)
    return {
        'timeframe': days,
        'cutoff': cutoff,
        'total_cars': total_cars(),
        'available_cars': available_cars(),
        'ongoing_rentals': ongoing_rentals(),
        'total_revenue': revenue(cutoff),
        'top_cars': top_cars(cutoff),
        'top_customers': top_customers(cutoff),
    }
