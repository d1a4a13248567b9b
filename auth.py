"""Operator authentication.

``AuthService`` wraps the session store of the current request.  The app
builds one per request and keeps it on ``g.auth``; signing in clears and
then establishes the session, signing out clears it.
"""

from functools import wraps
from typing import Callable, Optional

from flask import g, redirect, request, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from crud import EMAIL_RE
from errors import AuthError, ValidationError
from models import db, User


SESSION_KEY = 'user_id'
MIN_PASSWORD_LENGTH = 6


def _normalise_email(email: str) -> str:
    email = (email or '').strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError('Invalid email address')
    return email


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def create_user(email: str, password: str, name: Optional[str] = None,
                phone: Optional[str] = None) -> User:
    """Add an operator account."""
    email = _normalise_email(email)
    _check_password(password)
    if User.query.filter_by(email=email).first() is not None:
        raise ValidationError('A user with this email already exists')
    user = User(email=email, name=name, phone=phone,
                password_hash=generate_password_hash(password))
    db.session.add(user)
    db.session.commit()
    return user


class AuthService:
    def __init__(self, store) -> None:
        self.store = store
        self._user = None

    def current_user(self) -> Optional[User]:
        if self._user is None:
            user_id = self.store.get(SESSION_KEY)
            if user_id is not None:
                self._user = db.session.get(User, user_id)
                if self._user is None:
                    # account removed since the session was issued
                    self.store.clear()
        return self._user

    def sign_in(self, email: str, password: str) -> User:
        user = User.query.filter_by(email=(email or '').strip().lower()).first()
        if user is None or not check_password_hash(user.password_hash, password or ''):
            raise AuthError('Invalid email or password')
        self.store.clear()
        self.store[SESSION_KEY] = user.id
        self._user = user
        return user

    def sign_out(self) -> None:
        self.store.clear()
        self._user = None

    def update_user(self, email: Optional[str] = None, password: Optional[str] = None,
                    confirm: Optional[str] = None) -> User:
        """Change the signed-in operator's email and/or password."""
        user = self.current_user()
        if user is None:
            raise AuthError('Not signed in')
        if password:
            if password != confirm:
                raise ValidationError('New passwords do not match')
            _check_password(password)
        if email and email.strip().lower() != user.email:
            email = _normalise_email(email)
            taken = User.query.filter(User.email == email, User.id != user.id).first()
            if taken is not None:
                raise ValidationError('A user with this email already exists')
            user.email = email
        if password:
            user.password_hash = generate_password_hash(password)
        db.session.commit()
        return user


def login_required(view: Callable) -> Callable:
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return redirect(url_for('login', next=request.path))
        return view(*args, **kwargs)

    return wrapped
