import os

# Configure before the app module reads its settings.
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['SECRET_KEY'] = 'test-secret'

from decimal import Decimal

import pytest

import auth
from app import app as flask_app
from models import db, Car, Customer


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def operator(app):
    return auth.create_user('ops@example.com', 'secret123', name='Ops')


@pytest.fixture
def logged_in(client, operator):
    response = client.post('/login', data={'email': 'ops@example.com', 'password': 'secret123'})
    assert response.status_code == 302
    return client


@pytest.fixture
def make_car(app):
    counter = {'n': 0}

    def factory(daily_rate='50.00', status='Available', brand='Toyota', model='Corolla'):
        counter['n'] += 1
        car = Car(brand=brand, model=model, year=2022,
                  license_plate=f"PLATE-{counter['n']}",
                  status=status, daily_rate=Decimal(daily_rate))
        db.session.add(car)
        db.session.commit()
        return car

    return factory


@pytest.fixture
def make_customer(app):
    counter = {'n': 0}

    def factory(name=None):
        counter['n'] += 1
        n = counter['n']
        customer = Customer(name=name or f"Customer {n}", email=f"customer{n}@example.com")
        db.session.add(customer)
        db.session.commit()
        return customer

    return factory
