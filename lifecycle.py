"""Rental lifecycle and payment reconciliation.

A rental is created Ongoing against an Available car, which flips the car
to Rented.  It leaves Ongoing exactly once: Completed (paid in full, or
closed by hand) or Cancelled.  Either way the car goes back to Available.

Every operation below reads the rows it changes with ``FOR UPDATE`` and
writes rental, car and payment together in one commit, so a failure in
any write leaves none of them applied.
"""

from collections import namedtuple
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Tuple

from flask import current_app
from sqlalchemy import func

from crud import parse_date, parse_decimal
from errors import (CarUnavailableError, NotFoundError, PaymentError,
                    RentalError, ValidationError)
from models import db, Car, Customer, Rental, Payment, PAYMENT_METHODS, money


MAX_PAYMENT = Decimal('1000000')

PaymentResult = namedtuple('PaymentResult', 'payment completed remaining message')


@contextmanager
def transaction():
    """Commit the block's writes together, or roll all of them back."""
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def rental_days(rental_date: date, expected_return_date: date) -> int:
    """Number of billable days.  Anything up to one day is billed as one."""
    return max(1, (expected_return_date - rental_date).days)


def rental_cost(daily_rate, rental_date: date, expected_return_date: date) -> Decimal:
    return money(rental_days(rental_date, expected_return_date) * money(daily_rate))


def _lock_car(car_id: int) -> Car:
    car = Car.query.filter_by(car_id=car_id).with_for_update().first()
    if car is None:
        raise NotFoundError('Car not found')
    return car


def _lock_rental(rental_id: int) -> Rental:
    rental = Rental.query.filter_by(rental_id=rental_id).with_for_update().first()
    if rental is None:
        raise NotFoundError('Rental not found')
    return rental


def total_paid(rental_id: int) -> Decimal:
    paid = (db.session.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(Payment.rental_id == rental_id)
            .scalar())
    return money(paid)


def rental_balance(rental: Rental) -> Tuple[Decimal, Decimal]:
    """Return ``(paid, remaining)`` for ``rental``."""
    paid = total_paid(rental.rental_id)
    return paid, money(rental.total_cost) - paid


# ---------------------------------------------------------------------------
# Rental creation and closing

def create_rental(customer_id: int, car_id: int, rental_date, expected_return_date) -> Rental:
    """
    Rent ``car_id`` to ``customer_id`` from ``rental_date`` until
    ``expected_return_date``.

    The total cost is fixed here as billable days times the car's daily
    rate.  The car must be Available and must not already be out on an
    Ongoing rental; both checks run against the locked car row.
    """
    rental_date = parse_date(rental_date, 'Rental date')
    expected_return_date = parse_date(expected_return_date, 'Expected return date')

    with transaction():
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError('Customer not found')
        car = _lock_car(car_id)
        if car.status != 'Available':
            raise CarUnavailableError(f"{car.label} ({car.license_plate}) is {car.status}, not Available")
        ongoing = Rental.query.filter_by(car_id=car.car_id, status='Ongoing').first()
        if ongoing is not None:
            raise CarUnavailableError(f"{car.label} ({car.license_plate}) already has an ongoing rental")

        rental = Rental(
            customer_id=customer.customer_id,
            car_id=car.car_id,
            rental_date=rental_date,
            return_date=None,
            total_cost=rental_cost(car.daily_rate, rental_date, expected_return_date),
            status='Ongoing',
        )
        db.session.add(rental)
        car.status = 'Rented'

    current_app.logger.info('Rental %s created: car=%s customer=%s total=%s',
                            rental.rental_id, car.car_id, customer.customer_id,
                            rental.total_cost)
    return rental


def _close(rental: Rental, status: str) -> None:
    if rental.status != 'Ongoing':
        raise RentalError(f"Rental is already {rental.status}")
    rental.status = status
    car = _lock_car(rental.car_id)
    car.status = 'Available'


def complete_rental(rental_id: int, return_date=None) -> Rental:
    """Close an Ongoing rental as Completed and free its car."""
    return_date = parse_date(return_date, 'Return date') if return_date else date.today()
    with transaction():
        rental = _lock_rental(rental_id)
        if return_date < rental.rental_date:
            raise ValidationError('Return date cannot be before the rental date')
        _close(rental, 'Completed')
        rental.return_date = return_date
    current_app.logger.info('Rental %s completed on %s', rental_id, return_date)
    return rental


def cancel_rental(rental_id: int) -> Rental:
    """
    Cancel an Ongoing rental.  The car is freed whatever has been paid so
    far; payments and return date are left as they are.
    """
    with transaction():
        rental = _lock_rental(rental_id)
        _close(rental, 'Cancelled')
    current_app.logger.info('Rental %s cancelled, car %s available', rental_id, rental.car_id)
    return rental


# ---------------------------------------------------------------------------
# Payments

def submit_payment(rental_id: int, amount, payment_method: str, payment_date) -> PaymentResult:
    """
    Record a payment against a rental and reconcile its balance.

    The amount must be positive and no larger than what is still owed, so
    the sum of a rental's payments never exceeds its total cost.  The
    payment that brings the total paid up to the total cost completes the
    rental (returned today) and frees the car.
    """
    amount = parse_decimal(amount, 'Amount')
    if amount <= 0:
        raise ValidationError('Amount must be greater than 0')
    if amount > MAX_PAYMENT:
        raise ValidationError('Amount cannot exceed $1,000,000')
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {payment_method}")
    payment_date = parse_date(payment_date, 'Payment date')

    with transaction():
        rental = _lock_rental(rental_id)
        if rental.status != 'Ongoing':
            raise PaymentError(f"Rental is {rental.status}; payments are only taken for ongoing rentals")
        total_cost = money(rental.total_cost)
        paid, remaining = rental_balance(rental)
        if amount > remaining:
            raise PaymentError(f"Amount exceeds the remaining balance of ${remaining:.2f}")

        payment = Payment(
            rental_id=rental.rental_id,
            amount=amount,
            payment_date=payment_date,
            payment_method=payment_method,
            status='Paid',
        )
        db.session.add(payment)

        remaining = total_cost - (paid + amount)
        completed = remaining <= 0
        if completed:
            rental.status = 'Completed'
            rental.return_date = date.today()
            car = _lock_car(rental.car_id)
            car.status = 'Available'

    if completed:
        message = 'Full payment processed and rental completed'
    else:
        message = f"Partial payment processed. Remaining balance: ${remaining:.2f}"
    current_app.logger.info('Payment %s of %s recorded for rental %s (%s)',
                            payment.payment_id, amount, rental_id,
                            'completed' if completed else f'remaining {remaining}')
    return PaymentResult(payment, completed, money(max(remaining, Decimal('0'))), message)
