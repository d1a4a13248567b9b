"""
Rental lifecycle and payment reconciliation: creation, completion,
cancellation and payments against a rental's balance.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

import lifecycle
from errors import CarUnavailableError, NotFoundError, PaymentError, RentalError, ValidationError
from models import db, Car, Payment, Rental


def start(car, customer, days=3, rental_date=None):
    rental_date = rental_date or date.today()
    return lifecycle.create_rental(customer.customer_id, car.car_id,
                                   rental_date, rental_date + timedelta(days=days))


def paid_total(rental):
    return sum((p.amount for p in Payment.query.filter_by(rental_id=rental.rental_id)), Decimal('0'))


@pytest.mark.parametrize('days', [0, 1, -2])
def test_short_spans_bill_one_day(days):
    today = date(2024, 5, 1)
    assert lifecycle.rental_cost(Decimal('50'), today, today + timedelta(days=days)) == Decimal('50.00')


def test_cost_is_days_times_rate():
    assert lifecycle.rental_cost(Decimal('42.50'), date(2024, 5, 1), date(2024, 5, 5)) == Decimal('170.00')


def test_three_day_rental_costs_150_and_rents_the_car(make_car, make_customer):
    car = make_car(daily_rate='50.00')
    rental = start(car, make_customer(), days=3)

    assert rental.total_cost == Decimal('150.00')
    assert rental.status == 'Ongoing'
    assert rental.return_date is None
    assert db.session.get(Car, car.car_id).status == 'Rented'


def test_rental_accepts_form_dates(make_car, make_customer):
    car = make_car(daily_rate='20')
    rental = lifecycle.create_rental(make_customer().customer_id, car.car_id, '2024-06-01', '2024-06-08')
    assert rental.rental_date == date(2024, 6, 1)
    assert rental.total_cost == Decimal('140.00')


def test_car_cannot_have_two_ongoing_rentals(make_car, make_customer):
    car = make_car()
    start(car, make_customer())

    with pytest.raises(CarUnavailableError):
        start(car, make_customer())
    assert Rental.query.filter_by(car_id=car.car_id, status='Ongoing').count() == 1


def test_ongoing_rental_blocks_car_even_if_status_was_reset(make_car, make_customer):
    car = make_car()
    start(car, make_customer())
    car.status = 'Available'
    db.session.commit()

    with pytest.raises(CarUnavailableError, match='ongoing rental'):
        start(car, make_customer())


def test_car_in_maintenance_cannot_be_rented(make_car, make_customer):
    car = make_car(status='Maintenance')
    with pytest.raises(CarUnavailableError):
        start(car, make_customer())
    assert Rental.query.count() == 0


def test_missing_customer_or_car(make_car, make_customer):
    car = make_car()
    with pytest.raises(NotFoundError):
        lifecycle.create_rental(999, car.car_id, date.today(), date.today())
    with pytest.raises(NotFoundError):
        lifecycle.create_rental(make_customer().customer_id, 999, date.today(), date.today())
    assert db.session.get(Car, car.car_id).status == 'Available'


def test_missing_dates_are_rejected_before_any_write(make_car, make_customer):
    car = make_car()
    with pytest.raises(ValidationError):
        lifecycle.create_rental(make_customer().customer_id, car.car_id, '', '2024-01-01')
    assert Rental.query.count() == 0


def test_full_payment_completes_rental_and_frees_car(make_car, make_customer):
    car = make_car(daily_rate='50.00')
    rental = start(car, make_customer(), days=3)

    result = lifecycle.submit_payment(rental.rental_id, '150', 'Cash', date.today())

    assert result.completed
    assert result.message == 'Full payment processed and rental completed'
    assert result.remaining == Decimal('0.00')
    rental = db.session.get(Rental, rental.rental_id)
    assert rental.status == 'Completed'
    assert rental.return_date == date.today()
    assert db.session.get(Car, car.car_id).status == 'Available'
    assert result.payment.status == 'Paid'


def test_partial_payment_reports_remaining_balance(make_car, make_customer):
    car = make_car(daily_rate='50.00')
    rental = start(car, make_customer(), days=3)

    result = lifecycle.submit_payment(rental.rental_id, Decimal('60'), 'Credit Card', date.today())

    assert not result.completed
    assert result.remaining == Decimal('90.00')
    assert result.message == 'Partial payment processed. Remaining balance: $90.00'
    assert db.session.get(Rental, rental.rental_id).status == 'Ongoing'
    assert db.session.get(Car, car.car_id).status == 'Rented'


def test_payments_never_exceed_total_cost(make_car, make_customer):
    car = make_car(daily_rate='50.00')
    rental = start(car, make_customer(), days=3)

    for amount in ('40', '40', '40'):
        lifecycle.submit_payment(rental.rental_id, amount, 'Cash', date.today())
        assert paid_total(rental) <= rental.total_cost

    with pytest.raises(PaymentError, match=r'\$30\.00'):
        lifecycle.submit_payment(rental.rental_id, '40', 'Cash', date.today())
    assert paid_total(rental) == Decimal('120.00')

    result = lifecycle.submit_payment(rental.rental_id, '30', 'Bank Transfer', date.today())
    assert result.completed
    assert paid_total(rental) == rental.total_cost


def test_balance_before_and_after_payment(make_car, make_customer):
    rental = start(make_car(daily_rate='50.00'), make_customer(), days=3)
    assert lifecycle.rental_balance(rental) == (Decimal('0.00'), Decimal('150.00'))
    lifecycle.submit_payment(rental.rental_id, '25.50', 'Debit Card', date.today())
    assert lifecycle.rental_balance(rental) == (Decimal('25.50'), Decimal('124.50'))


@pytest.mark.parametrize('amount, method', [
    ('0', 'Cash'),
    ('-5', 'Cash'),
    ('abc', 'Cash'),
    ('2000000', 'Cash'),
    ('10', 'Cheque'),
])
def test_invalid_payments_are_rejected(make_car, make_customer, amount, method):
    rental = start(make_car(), make_customer())
    with pytest.raises(ValidationError):
        lifecycle.submit_payment(rental.rental_id, amount, method, date.today())
    assert Payment.query.count() == 0


def test_no_payment_for_closed_rental(make_car, make_customer):
    rental = start(make_car(), make_customer())
    lifecycle.cancel_rental(rental.rental_id)
    with pytest.raises(PaymentError):
        lifecycle.submit_payment(rental.rental_id, '10', 'Cash', date.today())


def test_cancel_frees_car_regardless_of_payments(make_car, make_customer):
    car = make_car(daily_rate='50.00')
    rental = start(car, make_customer(), days=3)
    lifecycle.submit_payment(rental.rental_id, '60', 'Cash', date.today())

    lifecycle.cancel_rental(rental.rental_id)

    rental = db.session.get(Rental, rental.rental_id)
    assert rental.status == 'Cancelled'
    assert rental.return_date is None
    assert db.session.get(Car, car.car_id).status == 'Available'
    assert paid_total(rental) == Decimal('60.00')


def test_complete_sets_return_date_and_frees_car(make_car, make_customer):
    car = make_car()
    rental = start(car, make_customer(), rental_date=date(2024, 7, 1))

    lifecycle.complete_rental(rental.rental_id, '2024-07-04')

    rental = db.session.get(Rental, rental.rental_id)
    assert rental.status == 'Completed'
    assert rental.return_date == date(2024, 7, 4)
    assert db.session.get(Car, car.car_id).status == 'Available'


def test_return_date_before_rental_date_is_rejected(make_car, make_customer):
    car = make_car()
    rental = start(car, make_customer(), days=2, rental_date=date(2024, 6, 10))

    with pytest.raises(ValidationError, match='before the rental date'):
        lifecycle.complete_rental(rental.rental_id, '2024-06-01')

    rental = db.session.get(Rental, rental.rental_id)
    assert rental.status == 'Ongoing'
    assert rental.return_date is None
    assert db.session.get(Car, car.car_id).status == 'Rented'


def test_return_on_rental_date_is_accepted(make_car, make_customer):
    rental = start(make_car(), make_customer(), rental_date=date(2024, 6, 10))
    lifecycle.complete_rental(rental.rental_id, date(2024, 6, 10))
    assert db.session.get(Rental, rental.rental_id).return_date == date(2024, 6, 10)


def test_closed_rental_cannot_be_closed_again(make_car, make_customer):
    rental = start(make_car(), make_customer())
    lifecycle.complete_rental(rental.rental_id)
    with pytest.raises(RentalError):
        lifecycle.cancel_rental(rental.rental_id)
    with pytest.raises(RentalError):
        lifecycle.complete_rental(rental.rental_id)


def test_freed_car_can_be_rented_again(make_car, make_customer):
    car = make_car()
    first = start(car, make_customer())
    lifecycle.cancel_rental(first.rental_id)
    second = start(car, make_customer())
    assert second.status == 'Ongoing'
    assert db.session.get(Car, car.car_id).status == 'Rented'
