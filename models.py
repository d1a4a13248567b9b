"""Database models for the car rental back office.

Five tables: users (operator accounts), customers, cars, rentals and
payments.  Status and payment method columns are plain strings guarded by
check constraints so the allowed values live next to the schema.
"""

from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint


db = SQLAlchemy()


CAR_STATUSES = ('Available', 'Rented', 'Maintenance')
RENTAL_STATUSES = ('Ongoing', 'Completed', 'Cancelled')
PAYMENT_STATUSES = ('Paid', 'Pending', 'Failed')
PAYMENT_METHODS = ('Cash', 'Credit Card', 'Debit Card', 'Bank Transfer')

CENTS = Decimal('0.01')


def money(value) -> Decimal:
    """Return ``value`` as a Decimal rounded to cents.  None counts as zero."""
    if value is None:
        return Decimal('0.00')
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _in(column: str, values) -> str:
    quoted = ', '.join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(120))
    phone = db.Column(db.String(50))
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Customer(db.Model):
    __tablename__ = 'customers'

    customer_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    phone = db.Column(db.String(50))
    address = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    rentals = db.relationship('Rental', back_populates='customer')

    def __repr__(self) -> str:
        return f"<Customer {self.name}>"


class Car(db.Model):
    __tablename__ = 'cars'
    __table_args__ = (
        CheckConstraint(_in('status', CAR_STATUSES), name='ck_cars_status'),
        CheckConstraint('daily_rate > 0', name='ck_cars_daily_rate'),
    )

    car_id = db.Column(db.Integer, primary_key=True)
    brand = db.Column(db.String(80), nullable=False)
    model = db.Column(db.String(80), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    license_plate = db.Column(db.String(20), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='Available')
    daily_rate = db.Column(db.Numeric(10, 2), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    rentals = db.relationship('Rental', back_populates='car')

    @property
    def label(self) -> str:
        return f"{self.brand} {self.model}"

    def __repr__(self) -> str:
        return f"<Car {self.license_plate}>"


class Rental(db.Model):
    __tablename__ = 'rentals'
    __table_args__ = (
        CheckConstraint(_in('status', RENTAL_STATUSES), name='ck_rentals_status'),
        CheckConstraint('total_cost >= 0', name='ck_rentals_total_cost'),
    )

    rental_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.customer_id'), nullable=False)
    car_id = db.Column(db.Integer, db.ForeignKey('cars.car_id'), nullable=False)
    rental_date = db.Column(db.Date, nullable=False)
    return_date = db.Column(db.Date, nullable=True)  # set when completed
    total_cost = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='Ongoing')
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    customer = db.relationship('Customer', back_populates='rentals')
    car = db.relationship('Car', back_populates='rentals')
    payments = db.relationship('Payment', back_populates='rental')

    def __repr__(self) -> str:
        return f"<Rental car={self.car_id} customer={self.customer_id} {self.status}>"


class Payment(db.Model):
    __tablename__ = 'payments'
    __table_args__ = (
        CheckConstraint(_in('status', PAYMENT_STATUSES), name='ck_payments_status'),
        CheckConstraint(_in('payment_method', PAYMENT_METHODS), name='ck_payments_method'),
        CheckConstraint('amount > 0', name='ck_payments_amount'),
    )

    payment_id = db.Column(db.Integer, primary_key=True)
    rental_id = db.Column(db.Integer, db.ForeignKey('rentals.rental_id'), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False, default=date.today)
    payment_method = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='Paid')
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    rental = db.relationship('Rental', back_populates='payments')

    def __repr__(self) -> str:
        return f"<Payment {self.amount} on {self.payment_date}>"
