from datetime import datetime, timezone
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base
from ..constants import DEFAULT_PREFERRED_LANGUAGE, TASK_DONE_STATUSES


def utcnow():
    return datetime.now(timezone.utc)


transaction_buyers = Table(
    "transaction_buyers",
    Base.metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True),
    Column("customer_id", Integer, ForeignKey("customers.id", ondelete="CASCADE"), primary_key=True),
)

transaction_sellers = Table(
    "transaction_sellers",
    Base.metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True),
    Column("customer_id", Integer, ForeignKey("customers.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)

    users = orm_relationship("User", back_populates="role")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    hashed_password = Column(String, nullable=False)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    role = orm_relationship("Role", back_populates="users")
    audit_logs = orm_relationship("AuditLog", back_populates="actor")

    @property
    def role_name(self) -> str:
        return self.role.name if self.role else ""

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.email

    def has_role(self, role_name: str) -> bool:
        return self.role_name == role_name


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)

    actor = orm_relationship("User", back_populates="audit_logs")


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    address = Column(String, nullable=False)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Numeric(4, 1), nullable=True)
    square_feet = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    transactions = orm_relationship("Transaction", back_populates="property")


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    license_number = Column(String, nullable=True)
    portal_email = Column(String, unique=True, index=True, nullable=True)
    portal_password_hash = Column(String, nullable=True)
    portal_access_enabled = Column(Boolean, default=False, nullable=False)
    preferred_language = Column(String, default=DEFAULT_PREFERRED_LANGUAGE, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = orm_relationship("User")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Lender(Base):
    __tablename__ = "lenders"

    id = Column(Integer, primary_key=True, index=True)
    company_name = Column(String, nullable=False)
    contact_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class Attorney(Base):
    __tablename__ = "attorneys"

    id = Column(Integer, primary_key=True, index=True)
    firm_name = Column(String, nullable=True)
    attorney_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    middle_name = Column(String, nullable=True)
    last_name = Column(String, nullable=False)
    email = Column(String, index=True, nullable=True)
    phone = Column(String, nullable=True)
    portal_access_enabled = Column(Boolean, default=False, nullable=False)
    portal_password_hash = Column(String, nullable=True)
    email_notifications_enabled = Column(Boolean, default=True, nullable=False)
    sms_notifications_enabled = Column(Boolean, default=False, nullable=False)
    preferred_language = Column(String, default=DEFAULT_PREFERRED_LANGUAGE, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    notifications = orm_relationship("Notification", back_populates="customer", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.middle_name, self.last_name) if part)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_type = Column(String, nullable=False, index=True)
    status = Column(String, default="pending", nullable=False, index=True)
    priority = Column(String, default="medium", nullable=False)

    property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    listing_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True)
    co_listing_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True)
    buyer_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True)
    co_buyer_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True)
    lender_id = Column(Integer, ForeignKey("lenders.id"), nullable=True)
    attorney_id = Column(Integer, ForeignKey("attorneys.id"), nullable=True)

    purchase_price = Column(Numeric(14, 2), nullable=True)
    commission_rate = Column(Numeric(7, 4), nullable=True)
    seller_commission_rate = Column(Numeric(7, 4), nullable=True)
    buyer_commission_rate = Column(Numeric(7, 4), nullable=True)
    commission_flat_fee = Column(Numeric(12, 2), nullable=True)
    closing_fee = Column(Numeric(12, 2), nullable=True)
    brokerage_fee = Column(Numeric(12, 2), nullable=True)
    due_diligence_money = Column(Numeric(12, 2), nullable=True)
    earnest_money_deposit = Column(Numeric(12, 2), nullable=True)
    closing_costs = Column(Numeric(12, 2), nullable=True)

    contract_date = Column(Date, nullable=True)
    closing_date = Column(Date, nullable=True)
    due_diligence_date = Column(Date, nullable=True)
    inspection_date = Column(Date, nullable=True)
    appraisal_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)
    google_drive_folder_id = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Declared before the `property` relationship, which shadows the builtin below it.
    @property
    def property_address(self):
        return self.property.address if self.property else None

    property = orm_relationship("Property", back_populates="transactions")
    listing_agent = orm_relationship("Agent", foreign_keys=[listing_agent_id])
    co_listing_agent = orm_relationship("Agent", foreign_keys=[co_listing_agent_id])
    buyer_agent = orm_relationship("Agent", foreign_keys=[buyer_agent_id])
    co_buyer_agent = orm_relationship("Agent", foreign_keys=[co_buyer_agent_id])
    lender = orm_relationship("Lender")
    attorney = orm_relationship("Attorney")
    # Link rows are written through the join tables directly; these are read-only views.
    buyers = orm_relationship("Customer", secondary=transaction_buyers, viewonly=True, order_by="Customer.id")
    sellers = orm_relationship("Customer", secondary=transaction_sellers, viewonly=True, order_by="Customer.id")
    tasks = orm_relationship("FollowUpEvent", back_populates="transaction", cascade="all, delete-orphan")
    assignments = orm_relationship(
        "TransactionAssignment", back_populates="transaction", cascade="all, delete-orphan"
    )
    documents = orm_relationship("Document", back_populates="transaction")


class TransactionAssignment(Base):
    __tablename__ = "transaction_assignments"
    __table_args__ = (UniqueConstraint("transaction_id", "assigned_to_user_id", name="uq_transaction_assignee"),)

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    transaction = orm_relationship("Transaction", back_populates="assignments")
    assigned_to = orm_relationship("User", foreign_keys=[assigned_to_user_id])
    assigned_by = orm_relationship("User", foreign_keys=[assigned_by_user_id])


class TaskTemplate(Base):
    __tablename__ = "follow_up_event_templates"

    id = Column(Integer, primary_key=True, index=True)
    transaction_type = Column(String, nullable=False, index=True)
    event_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    anchor = Column(String, default="contract", nullable=False)
    days_offset = Column(Integer, default=0, nullable=False)
    priority = Column(String, default="medium", nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class FollowUpEvent(Base):
    __tablename__ = "follow_up_events"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    template_id = Column(Integer, ForeignKey("follow_up_event_templates.id", ondelete="SET NULL"), nullable=True)
    event_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(Date, nullable=True)
    priority = Column(String, default="medium", nullable=False)
    status = Column(String, default="pending", nullable=False, index=True)
    assigned_to_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    transaction = orm_relationship("Transaction", back_populates="tasks")
    template = orm_relationship("TaskTemplate")
    assigned_to = orm_relationship("User")
    documents = orm_relationship("Document", back_populates="task")

    @property
    def is_done(self) -> bool:
        return self.status in TASK_DONE_STATUSES


class DocumentType(Base):
    __tablename__ = "document_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True, index=True)
    task_id = Column(Integer, ForeignKey("follow_up_events.id", ondelete="SET NULL"), nullable=True, index=True)
    google_drive_id = Column(String, nullable=True, index=True)
    google_drive_url = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    file_type = Column(String, nullable=True)
    uploaded_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    document_type_id = Column(Integer, ForeignKey("document_types.id"), nullable=True)
    drive_status = Column(String, default="uploaded", nullable=False, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    transaction = orm_relationship("Transaction", back_populates="documents")
    task = orm_relationship("FollowUpEvent", back_populates="documents")
    uploaded_by = orm_relationship("User")
    document_type = orm_relationship("DocumentType")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True)
    task_id = Column(Integer, ForeignKey("follow_up_events.id", ondelete="SET NULL"), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    customer = orm_relationship("Customer", back_populates="notifications")


class GoogleDriveCredential(Base):
    __tablename__ = "google_drive_credentials"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    folder_id = Column(String, nullable=True)
    folder_name = Column(String, nullable=True)
    connected_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
