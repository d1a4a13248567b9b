"""Car rental back office.

This Flask application manages a rental fleet: cars, customers, rental
agreements and the payments taken against them, with a dashboard and a
revenue report on top.  Every screen except the login page requires a
signed-in operator.

To run the app locally:

    # Install dependencies
    pip install -e .

    # Initialise the database and add an operator account
    python app.py --init-db
    python app.py --create-user admin@example.com secret123

    # Start the development server
    python app.py

Settings are read from the environment (or a ``.env`` file): ``SECRET_KEY``,
``DATABASE_URL`` and ``LOG_LEVEL``.
"""

import argparse
import logging
import os
from datetime import date

from dotenv import load_dotenv
from flask import (Flask, g, redirect, render_template, request,
                   session, url_for, flash)
from sqlalchemy.exc import SQLAlchemyError

import auth
import crud
import lifecycle
import reports
from errors import RentalError
from models import (db, CAR_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES,
                    RENTAL_STATUSES)


def log_level(name) -> int:
    """Numeric level for a LOG_LEVEL name; unknown names fall back to INFO."""
    level = logging.getLevelName((name or 'INFO').strip().upper())
    return level if isinstance(level, int) else logging.INFO


load_dotenv()

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'change-me')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///car_rental.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.logger.setLevel(log_level(os.environ.get('LOG_LEVEL')))

db.init_app(app)


# ---------------------------------------------------------------------------
# Session handling.  Each request gets its own AuthService bound to the
# Flask session; views read the signed-in operator from ``g.user``.

@app.before_request
def load_operator():
    g.auth = auth.AuthService(session)
    g.user = g.auth.current_user()


@app.context_processor
def inject_operator():
    return {'current_user': g.get('user'), 'today_iso': date.today().isoformat()}


def report_failure(action: str, exc: Exception) -> None:
    """Roll back, log and flash a failed action.  Nothing is retried."""
    db.session.rollback()
    if isinstance(exc, RentalError):
        app.logger.warning('%s rejected: %s', action, exc)
        flash(str(exc), 'error')
    else:
        app.logger.error('%s failed: %s', action, exc, exc_info=exc)
        flash(f"Failed to {action.lower()}", 'error')


def selected_timeframe() -> int:
    days = request.args.get('timeframe', type=int)
    return days if days in reports.TIMEFRAMES else reports.DEFAULT_TIMEFRAME


def selected_status(allowed):
    status = request.args.get('status') or None
    return status if status in allowed else None


@app.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        try:
            g.auth.sign_in(request.form.get('email'), request.form.get('password'))
        except RentalError as exc:
            app.logger.warning('Sign-in failed for %s', request.form.get('email'))
            flash(str(exc), 'error')
            return render_template('login.html'), 401
        target = request.args.get('next') or ''
        # only follow local paths
        if not target.startswith('/') or target.startswith('//'):
            target = url_for('dashboard')
        return redirect(target)
    if g.user is not None:
        return redirect(url_for('dashboard'))
    return render_template('login.html')


@app.route('/logout', methods=['POST'])
def logout():
    g.auth.sign_out()
    return redirect(url_for('login'))


@app.route('/settings', methods=['GET', 'POST'])
@auth.login_required
def settings():
    """Change the operator's email or password."""
    if request.method == 'POST':
        try:
            g.auth.update_user(email=request.form.get('email'),
                               password=request.form.get('new_password'),
                               confirm=request.form.get('confirm_password'))
        except (RentalError, SQLAlchemyError) as exc:
            report_failure('Update profile', exc)
        else:
            flash('Profile updated successfully', 'success')
            return redirect(url_for('settings'))
    return render_template('settings.html', user=g.user)


@app.route('/')
@auth.login_required
def index():
    return redirect(url_for('dashboard'))


@app.route('/dashboard')
@auth.login_required
def dashboard():
    """
    Fleet counters (total cars, available cars, ongoing rentals) and, for the
    chosen timeframe, revenue and the top cars and customers.
    """
    try:
        stats = reports.summary(selected_timeframe())
    except SQLAlchemyError as exc:
        report_failure('Fetch dashboard statistics', exc)
        stats = None
    return render_template('dashboard.html', stats=stats, timeframes=reports.TIMEFRAMES)


@app.route('/reports')
@auth.login_required
def report_view():
    days = selected_timeframe()
    cutoff = reports.report_cutoff(days)
    try:
        stats = {
            'timeframe': days,
            'cutoff': cutoff,
            'total_revenue': reports.revenue(cutoff),
            'top_cars': reports.top_cars(cutoff),
            'top_customers': reports.top_customers(cutoff),
        }
    except SQLAlchemyError as exc:
        report_failure('Fetch report statistics', exc)
        stats = None
    return render_template('reports.html', stats=stats, timeframes=reports.TIMEFRAMES)


# ---------------------------------------------------------------------------
# Cars

@app.route('/cars')
@auth.login_required
def list_cars():
    status = selected_status(CAR_STATUSES)
    cars = crud.list_cars(status)
    return render_template('cars.html', cars=cars, status=status, statuses=CAR_STATUSES)


@app.route('/cars/add', methods=['GET', 'POST'])
@auth.login_required
def add_car():
    if request.method == 'POST':
        try:
            car = crud.create_car(request.form)
        except (RentalError, SQLAlchemyError) as exc:
            report_failure('Add car', exc)
            return render_template('car_form.html', car=None, form=request.form,
                                   statuses=CAR_STATUSES), 400
        app.logger.info('Car %s added (%s)', car.car_id, car.license_plate)
        flash('Car added successfully', 'success')
        return redirect(url_for('list_cars'))
    return render_template('car_form.html', car=None, form={}, statuses=CAR_STATUSES)


@app.route('/cars/edit/<int:car_id>', methods=['GET', 'POST'])
@auth.login_required
def edit_car(car_id: int):
    car = crud.get_car(car_id)
    if request.method == 'POST':
        try:
            crud.update_car(car, request.form)
        except (RentalError, SQLAlchemyError) as exc:
            report_failure('Update car', exc)
            return render_template('car_form.html', car=car, form=request.form,
                                   statuses=CAR_STATUSES), 400
        flash('Car updated successfully', 'success')
        return redirect(url_for('list_cars'))
    return render_template('car_form.html', car=car, form={}, statuses=CAR_STATUSES)


@app.route('/cars/delete/<int:car_id>', methods=['POST'])
@auth.login_required
def delete_car(car_id: int):
    car = crud.get_car(car_id)
    try:
        crud.delete_car(car)
    except (RentalError, SQLAlchemyError) as exc:
        report_failure('Delete car', exc)
    else:
        app.logger.info('Car %s deleted', car_id)
        flash('Car deleted successfully', 'success')
    return redirect(url_for('list_cars'))


# ---------------------------------------------------------------------------
# Customers

@app.route('/customers')
@auth.login_required
def list_customers():
    q = (request.args.get('q') or '').strip()
    return render_template('customers.html', customers=crud.list_customers(q or None), q=q)


@app.route('/customers/add', methods=['GET', 'POST'])
@auth.login_required
def add_customer():
    if request.method == 'POST':
        try:
            crud.create_customer(request.form)
        except (RentalError, SQLAlchemyError) as exc:
            report_failure('Add customer', exc)
            return render_template('customer_form.html', customer=None, form=request.form), 400
        flash('Customer added successfully', 'success')
        return redirect(url_for('list_customers'))
    return render_template('customer_form.html', customer=None, form={})


@app.route('/customers/edit/<int:customer_id>', methods=['GET', 'POST'])
@auth.login_required
def edit_customer(customer_id: int):
    customer = crud.get_customer(customer_id)
    if request.method == 'POST':
        try:
            crud.update_customer(customer, request.form)
        except (RentalError, SQLAlchemyError) as exc:
            report_failure('Update customer', exc)
            return render_template('customer_form.html', customer=customer, form=request.form), 400
        flash('Customer updated successfully', 'success')
        return redirect(url_for('list_customers'))
    return render_template('customer_form.html', customer=customer, form={})


@app.route('/customers/delete/<int:customer_id>', methods=['POST'])
@auth.login_required
def delete_customer(customer_id: int):
    customer = crud.get_customer(customer_id)
    try:
        crud.delete_customer(customer)
    except (RentalError, SQLAlchemyError) as exc:
        report_failure('Delete customer', exc)
    else:
        flash('Customer deleted successfully', 'success')
    return redirect(url_for('list_customers'))


# ---------------------------------------------------------------------------
# Rentals

@app.route('/rentals')
@auth.login_required
def list_rentals():
    status = selected_status(RENTAL_STATUSES)
    rentals = crud.list_rentals(status)
    return render_template('rentals.html', rentals=rentals, status=status,
                           statuses=RENTAL_STATUSES)


@app.route('/rentals/add', methods=['GET', 'POST'])
@auth.login_required
def add_rental():
    """
    Create a rental.  Only Available cars are offered; the total cost is
    worked out from the car's daily rate and the expected return date.
    """
    customers = crud.list_customers()
    cars = crud.available_cars()
    if request.method == 'POST':
        try:
            lifecycle.create_rental(
                customer_id=crud.parse_int(request.form.get('customer_id'), 'Customer'),
                car_id=crud.parse_int(request.form.get('car_id'), 'Car'),
                rental_date=request.form.get('rental_date'),
                expected_return_date=request.form.get('expected_return_date'),
            )
        except (RentalError, SQLAlchemyError) as exc:
            report_failure('Create rental', exc)
            return render_template('rental_form.html', customers=customers, cars=cars,
                                   form=request.form), 400
        flash('Rental created successfully', 'success')
        return redirect(url_for('list_rentals'))
    return render_template('rental_form.html', customers=customers, cars=cars, form={})


@app.route('/rentals/complete/<int:rental_id>', methods=['POST'])
@auth.login_required
def complete_rental(rental_id: int):
    crud.get_rental(rental_id)
    try:
        lifecycle.complete_rental(rental_id, request.form.get('return_date'))
    except (RentalError, SQLAlchemyError) as exc:
        report_failure('Complete rental', exc)
    else:
        flash('Rental completed successfully', 'success')
    return redirect(url_for('list_rentals'))


@app.route('/rentals/cancel/<int:rental_id>', methods=['POST'])
@auth.login_required
def cancel_rental(rental_id: int):
    crud.get_rental(rental_id)
    try:
        lifecycle.cancel_rental(rental_id)
    except (RentalError, SQLAlchemyError) as exc:
        report_failure('Cancel rental', exc)
    else:
        flash('Rental cancelled successfully', 'success')
    return redirect(url_for('list_rentals'))


@app.route('/rentals/delete/<int:rental_id>', methods=['POST'])
@auth.login_required
def delete_rental(rental_id: int):
    rental = crud.get_rental(rental_id)
    try:
        crud.delete_rental(rental)
    except (RentalError, SQLAlchemyError) as exc:
        report_failure('Delete rental', exc)
    else:
        flash('Rental deleted successfully', 'success')
    return redirect(url_for('list_rentals'))


# ---------------------------------------------------------------------------
# Payments

@app.route('/payments')
@auth.login_required
def list_payments():
    return render_template('payments.html', payments=crud.list_payments(), rental=None,
                           statuses=PAYMENT_STATUSES)


@app.route('/payments/rental/<int:rental_id>')
@auth.login_required
def list_payments_for_rental(rental_id: int):
    rental = crud.get_rental(rental_id)
    return render_template('payments.html', payments=crud.list_payments(rental_id),
                           rental=rental, statuses=PAYMENT_STATUSES)


@app.route('/payments/add/<int:rental_id>', methods=['GET', 'POST'])
@auth.login_required
def add_payment(rental_id: int):
    """
    Take a payment for a rental.  The form is pre-filled with the remaining
    balance; paying it off completes the rental and frees the car.
    """
    rental = crud.get_rental(rental_id)
    if rental.status != 'Ongoing':
        flash(f"Rental is {rental.status}; no payment is due", 'error')
        return redirect(url_for('list_rentals'))
    if request.method == 'POST':
        try:
            result = lifecycle.submit_payment(
                rental_id,
                amount=request.form.get('amount'),
                payment_method=request.form.get('payment_method'),
                payment_date=request.form.get('payment_date'),
            )
        except (RentalError, SQLAlchemyError) as exc:
            report_failure('Process payment', exc)
            paid, remaining = lifecycle.rental_balance(rental)
            return render_template('payment_form.html', rental=rental, paid=paid,
                                   remaining=remaining, methods=PAYMENT_METHODS,
                                   form=request.form), 400
        flash(result.message, 'success')
        return redirect(url_for('list_rentals'))
    paid, remaining = lifecycle.rental_balance(rental)
    return render_template('payment_form.html', rental=rental, paid=paid,
                           remaining=remaining, methods=PAYMENT_METHODS, form={})


@app.route('/payments/status/<int:payment_id>', methods=['POST'])
@auth.login_required
def update_payment_status(payment_id: int):
    payment = crud.get_payment(payment_id)
    try:
        crud.update_payment_status(payment, request.form.get('status', ''))
    except (RentalError, SQLAlchemyError) as exc:
        report_failure('Update payment status', exc)
    else:
        flash('Payment status updated', 'success')
    return redirect(url_for('list_payments'))


@app.errorhandler(404)
def not_found(error):
    return render_template('404.html'), 404


def init_db():
    """Initialise the database tables."""
    db.create_all()
    app.logger.info('Database initialised.')


if __name__ == '__main__':
    logging.basicConfig(level=log_level(os.environ.get('LOG_LEVEL')))
    parser = argparse.ArgumentParser(description="Car rental back office")
    parser.add_argument('--init-db', action='store_true', help='Initialise the database')
    parser.add_argument('--create-user', nargs=2, metavar=('EMAIL', 'PASSWORD'),
                        help='Add an operator account')
    args = parser.parse_args()
    if args.init_db or args.create_user:
        with app.app_context():
            if args.init_db:
                init_db()
            if args.create_user:
                user = auth.create_user(*args.create_user)
                app.logger.info('Operator %s created.', user.email)
    else:
        app.run(debug=True)
