#!/usr/bin/env python
"""
Seed script to populate the database with sample transactions for local development.

Usage:
    python scripts/seed_data.py --transactions 3
"""

import argparse
from datetime import date, timedelta
from decimal import Decimal

from conecta import config
from conecta.auth.jwt import get_password_hash
from conecta.config import Base
from conecta.main import ensure_default_roles
from conecta.models.models import Agent, Customer, Property, Role, User
from conecta.schemas.schemas import TransactionCreate
from conecta.services.documents import ensure_document_types
from conecta.services.templates import ensure_default_templates
from conecta.services.transactions import create_transaction


def get_role(session, name: str) -> Role:
    role = session.query(Role).filter(Role.name == name).first()
    if not role:
        raise RuntimeError(f"Role '{name}' is not defined. Run ensure_default_roles first.")
    return role


def get_or_create_user(session, email: str, role_name: str, first_name: str, last_name: str) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        hashed_password=get_password_hash("changeme"),
        role_id=get_role(session, role_name).id,
    )
    session.add(user)
    session.flush()
    return user


def create_agent(session, user: User) -> Agent:
    agent = session.query(Agent).filter(Agent.user_id == user.id).first()
    if agent:
        return agent
    agent = Agent(
        user_id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        license_number="NC-000123",
        portal_email=f"portal.{user.email}",
        portal_password_hash=get_password_hash("changeme"),
        portal_access_enabled=True,
    )
    session.add(agent)
    session.flush()
    return agent


def create_transaction_bundle(session, index: int, actor: User, agent: Agent) -> None:
    prop = Property(address=f"{200 + index} Magnolia Ave", city="Charlotte", state="NC", zip_code="28202")
    buyer = Customer(
        first_name=f"Buyer{index}",
        last_name="Sample",
        email=f"buyer{index}@example.com",
        portal_access_enabled=True,
        portal_password_hash=get_password_hash("changeme"),
    )
    seller = Customer(first_name=f"Seller{index}", last_name="Sample", email=f"seller{index}@example.com")
    session.add_all([prop, buyer, seller])
    session.flush()

    contract_date = date.today() - timedelta(days=7 * index)
    payload = TransactionCreate(
        transaction_type="purchase",
        property_id=prop.id,
        buyer_agent_id=agent.id,
        purchase_price=Decimal("250000") + Decimal(index * 15000),
        contract_date=contract_date,
        closing_date=contract_date + timedelta(days=45),
        buyer_ids=[buyer.id],
        seller_ids=[seller.id],
    )
    create_transaction(session, payload, actor)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed sample transaction data")
    parser.add_argument("--transactions", type=int, default=3, help="Number of sample transactions")
    args = parser.parse_args()

    Base.metadata.create_all(bind=config.engine)
    session = config.SessionLocal()
    try:
        ensure_default_roles(session)
        ensure_default_templates(session)
        ensure_document_types(session)
        admin = get_or_create_user(session, "admin@example.com", "admin", "Site", "Administrator")
        agent_user = get_or_create_user(session, "agent@example.com", "agent", "Ana", "Agent")
        get_or_create_user(session, "assistant@example.com", "assistant", "Tomas", "Coordinator")
        agent = create_agent(session, agent_user)
        session.commit()
        for index in range(1, args.transactions + 1):
            create_transaction_bundle(session, index, admin, agent)
        print(f"Seeded {args.transactions} transactions. Staff password for all accounts: changeme")
    finally:
        session.close()


if __name__ == "__main__":
    main()
