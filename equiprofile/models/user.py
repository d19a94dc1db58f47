from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import CheckConstraint, func
from equiprofile.extensions import db, login_manager

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_CHOICES = (ROLE_USER, ROLE_ADMIN)

STATUS_TRIAL = "trial"
STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_OVERDUE = "overdue"
STATUS_EXPIRED = "expired"
STATUS_CHOICES = (STATUS_TRIAL, STATUS_ACTIVE, STATUS_CANCELLED, STATUS_OVERDUE, STATUS_EXPIRED)

PLAN_MONTHLY = "monthly"
PLAN_YEARLY = "yearly"
PLAN_CHOICES = (PLAN_MONTHLY, PLAN_YEARLY)


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    open_id = db.Column(db.String(64), nullable=False, unique=True)
    email = db.Column(db.String(320), nullable=True)  # case-insensitive unique via uq_users_email_lower
    password_hash = db.Column(db.String(255), nullable=True)
    name = db.Column(db.Text, nullable=True)
    login_method = db.Column(db.String(64), nullable=True)

    # Keep simple text+CHECK for evolvable values (no DB enum migration pain)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER, server_default=ROLE_USER)

    subscription_status = db.Column(
        db.String(20), nullable=False, index=True, default=STATUS_TRIAL, server_default=STATUS_TRIAL
    )
    subscription_plan = db.Column(db.String(20), nullable=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    trial_ends_at = db.Column(db.DateTime, nullable=True)
    subscription_ends_at = db.Column(db.DateTime, nullable=True)
    last_payment_at = db.Column(db.DateTime, nullable=True)

    # Account status
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.true())
    is_suspended = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    suspended_reason = db.Column(db.Text, nullable=True)

    # Profile
    phone = db.Column(db.String(20), nullable=True)
    location = db.Column(db.String(255), nullable=True)

    # Optimistic concurrency: every UPDATE is guarded by the version read
    version_id = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
    last_signed_in_at = db.Column(db.DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        db.Index("uq_users_email_lower", func.lower(email), unique=True),
        CheckConstraint("role IN ('user','admin')", name="ck_users_role_valid"),
        CheckConstraint(
            "subscription_status IN ('trial','active','cancelled','overdue','expired')",
            name="ck_users_subscription_status_valid",
        ),
        CheckConstraint(
            "subscription_plan IS NULL OR subscription_plan IN ('monthly','yearly')",
            name="ck_users_subscription_plan_valid",
        ),
    )

    # helpers
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User id={self.id} status={self.subscription_status!r} role={self.role!r}>"


@login_manager.user_loader
def load_user(user_id: str):
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
    # soft-deleted accounts lose their session
    if user is None or not user.is_active:
        return None
    return user
