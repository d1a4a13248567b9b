"""Create, read, update and delete operations for the four entity tables.

Each ``create_*``/``update_*`` takes the submitted form (any mapping) and
validates it before touching the session, so a rejected form never issues
a write.  Rental and payment creation go through :mod:`lifecycle` because
they also move car and rental statuses.
"""

import re
from datetime import datetime, date
from decimal import Decimal, InvalidOperation

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from errors import CarUnavailableError, RentalError, ValidationError
from models import (db, Car, Customer, Rental, Payment, CAR_STATUSES,
                    PAYMENT_STATUSES, RENTAL_STATUSES, money)


DATE_FORMAT = '%Y-%m-%d'
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


# ---------------------------------------------------------------------------
# Form parsing

def required(form, field: str, label: str) -> str:
    value = (form.get(field) or '').strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value


def optional(form, field: str):
    value = (form.get(field) or '').strip()
    return value or None


def parse_date(value, label: str) -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError(f"{label} is required")
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(f"{label} must be a date (YYYY-MM-DD)")


def parse_decimal(value, label: str) -> Decimal:
    if value is None or value == '':
        raise ValidationError(f"{label} is required")
    try:
        parsed = Decimal(str(value).strip())
        if not parsed.is_finite():
            raise InvalidOperation
        return money(parsed)
    except InvalidOperation:
        raise ValidationError(f"{label} must be a number")


def parse_int(value, label: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number")


def _commit(duplicate_message: str) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(duplicate_message)


# ---------------------------------------------------------------------------
# Cars

def list_cars(status=None):
    query = Car.query
    if status:
        if status not in CAR_STATUSES:
            raise ValidationError(f"Unknown car status: {status}")
        query = query.filter(Car.status == status)
    return query.order_by(Car.created_at.desc(), Car.car_id.desc()).all()


def available_cars():
    """Cars offered on the rental form."""
    return Car.query.filter_by(status='Available').order_by(Car.brand, Car.model).all()


def get_car(car_id: int) -> Car:
    return db.get_or_404(Car, car_id)


def _car_fields(form) -> dict:
    brand = required(form, 'brand', 'Brand')
    model = required(form, 'model', 'Model')
    year = parse_int(form.get('year'), 'Year')
    max_year = date.today().year + 1
    if not 1900 <= year <= max_year:
        raise ValidationError(f"Year must be between 1900 and {max_year}")
    license_plate = required(form, 'license_plate', 'License plate')
    daily_rate = parse_decimal(form.get('daily_rate'), 'Daily rate')
    if daily_rate <= 0:
        raise ValidationError('Daily rate must be greater than 0')
    return {'brand': brand, 'model': model, 'year': year,
            'license_plate': license_plate, 'daily_rate': daily_rate}


def _plate_taken(plate: str, exclude_id=None) -> bool:
    query = Car.query.filter(Car.license_plate == plate)
    if exclude_id is not None:
        query = query.filter(Car.car_id != exclude_id)
    return db.session.query(query.exists()).scalar()


def create_car(form) -> Car:
    """Add a car to the fleet.  New cars always start out Available."""
    fields = _car_fields(form)
    if _plate_taken(fields['license_plate']):
        raise ValidationError('License plate already exists')
    car = Car(status='Available', **fields)
    db.session.add(car)
    _commit('License plate already exists')
    return car


def update_car(car: Car, form) -> Car:
    """
    Apply an edit to ``car``.  The status may only move between Available
    and Maintenance, and not at all while the car is out on a rental;
    Rented is set and cleared by the rental lifecycle alone.
    """
    fields = _car_fields(form)
    status = (form.get('status') or car.status).strip()
    if status not in CAR_STATUSES:
        raise ValidationError(f"Unknown car status: {status}")
    if status != car.status:
        if has_ongoing_rental(car.car_id):
            raise CarUnavailableError('Cannot change the status of a car with an ongoing rental')
        if status == 'Rented':
            raise CarUnavailableError('A car becomes Rented only by creating a rental')
    if _plate_taken(fields['license_plate'], exclude_id=car.car_id):
        raise ValidationError('License plate already exists')
    for key, value in fields.items():
        setattr(car, key, value)
    car.status = status
    _commit('License plate already exists')
    return car


def delete_car(car: Car) -> None:
    if Rental.query.filter_by(car_id=car.car_id).first() is not None:
        raise RentalError('Cannot delete a car that has rentals')
    db.session.delete(car)
    db.session.commit()


def has_ongoing_rental(car_id: int) -> bool:
    query = Rental.query.filter_by(car_id=car_id, status='Ongoing')
    return db.session.query(query.exists()).scalar()


# ---------------------------------------------------------------------------
# Customers

def list_customers(search=None):
    """Customers newest first, optionally narrowed to a name/email/phone match."""
    query = Customer.query
    search = (search or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Customer.name.ilike(pattern),
                                 Customer.email.ilike(pattern),
                                 Customer.phone.ilike(pattern)))
    return query.order_by(Customer.created_at.desc(), Customer.customer_id.desc()).all()


def get_customer(customer_id: int) -> Customer:
    return db.get_or_404(Customer, customer_id)


def _customer_fields(form) -> dict:
    name = required(form, 'name', 'Name')
    email = required(form, 'email', 'Email').lower()
    if not EMAIL_RE.match(email):
        raise ValidationError('Invalid email address')
    return {'name': name, 'email': email,
            'phone': optional(form, 'phone'),
            'address': optional(form, 'address')}


def _email_taken(email: str, exclude_id=None) -> bool:
    query = Customer.query.filter(Customer.email == email)
    if exclude_id is not None:
        query = query.filter(Customer.customer_id != exclude_id)
    return db.session.query(query.exists()).scalar()


def create_customer(form) -> Customer:
    fields = _customer_fields(form)
    if _email_taken(fields['email']):
        raise ValidationError('A customer with this email already exists')
    customer = Customer(**fields)
    db.session.add(customer)
    _commit('A customer with this email already exists')
    return customer


def update_customer(customer: Customer, form) -> Customer:
    fields = _customer_fields(form)
    if _email_taken(fields['email'], exclude_id=customer.customer_id):
        raise ValidationError('A customer with this email already exists')
    for key, value in fields.items():
        setattr(customer, key, value)
    _commit('A customer with this email already exists')
    return customer


def delete_customer(customer: Customer) -> None:
    if Rental.query.filter_by(customer_id=customer.customer_id).first() is not None:
        raise RentalError('Cannot delete a customer that has rentals')
    db.session.delete(customer)
    db.session.commit()


# ---------------------------------------------------------------------------
# Rentals

def list_rentals(status=None):
    query = Rental.query
    if status:
        if status not in RENTAL_STATUSES:
            raise ValidationError(f"Unknown rental status: {status}")
        query = query.filter(Rental.status == status)
    return query.order_by(Rental.created_at.desc(), Rental.rental_id.desc()).all()


def get_rental(rental_id: int) -> Rental:
    return db.get_or_404(Rental, rental_id)


def delete_rental(rental: Rental) -> None:
    if rental.status == 'Ongoing':
        raise RentalError('Cancel or complete the rental before deleting it')
    if Payment.query.filter_by(rental_id=rental.rental_id).first() is not None:
        raise RentalError('Cannot delete a rental that has payments')
    db.session.delete(rental)
    db.session.commit()


# ---------------------------------------------------------------------------
# Payments

def list_payments(rental_id=None):
    """Payments with their rental, customer and car, latest first."""
    query = (Payment.query
             .join(Rental, Payment.rental_id == Rental.rental_id)
             .options(joinedload(Payment.rental).joinedload(Rental.customer),
                      joinedload(Payment.rental).joinedload(Rental.car)))
    if rental_id is not None:
        query = query.filter(Payment.rental_id == rental_id)
    return query.order_by(Payment.payment_date.desc(), Payment.payment_id.desc()).all()


def get_payment(payment_id: int) -> Payment:
    return db.get_or_404(Payment, payment_id)


def update_payment_status(payment: Payment, status: str) -> Payment:
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status: {status}")
    payment.status = status
    db.session.commit()
    return payment
