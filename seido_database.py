# seido_database.py

from extensions import db
from utils.datetime_utils import utc_now


# --- Company Model ---
class Company(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    legal_name = db.Column(db.String(200), nullable=True)
    vat_number = db.Column(db.String(50), unique=True, nullable=True)
    street = db.Column(db.String(500), nullable=True)
    street_number = db.Column(db.String(20), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    country = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    website = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    contacts = db.relationship('Contact', back_populates='company', lazy=True)

    def __repr__(self):
        return f'<Company {self.name}>'


# --- Contact Model ---
class Contact(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    # NULLs do not collide on unique columns, so contacts without email are allowed
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone = db.Column(db.String(50), nullable=True)
    role = db.Column(db.String(20), nullable=False)  # locataire, prestataire, proprietaire
    address = db.Column(db.String(500), nullable=True)
    speciality = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    company = db.relationship('Company', back_populates='contacts')
    contract_links = db.relationship('ContractContact', back_populates='contact', lazy=True)

    def __repr__(self):
        return f'<Contact {self.name} ({self.role})>'


# --- Building Model ---
class Building(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    address = db.Column(db.String(500), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    postal_code = db.Column(db.String(20), nullable=False)
    country = db.Column(db.String(50), nullable=False, default='belgique')
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    lots = db.relationship('Lot', back_populates='building', lazy=True)

    def __repr__(self):
        return f'<Building {self.name}>'


# --- Lot Model ---
class Lot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(100), nullable=False, index=True)
    # NULL for independent lots (houses, standalone garages)
    building_id = db.Column(db.Integer, db.ForeignKey('building.id'), nullable=True)
    category = db.Column(db.String(30), nullable=False, default='appartement')
    floor = db.Column(db.Integer, nullable=True)
    street = db.Column(db.String(500), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    building = db.relationship('Building', back_populates='lots')
    contracts = db.relationship('Contract', back_populates='lot', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('reference', 'building_id', name='uq_lot_reference_building'),
    )

    def __repr__(self):
        return f'<Lot {self.reference}>'


# --- Contract (bail) Model ---
class Contract(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    lot_id = db.Column(db.Integer, db.ForeignKey('lot.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    duration_months = db.Column(db.Integer, nullable=False)
    rent_amount = db.Column(db.Numeric(10, 2), nullable=False)
    charges_amount = db.Column(db.Numeric(10, 2), nullable=True)
    guarantee_amount = db.Column(db.Numeric(10, 2), nullable=True)
    contract_type = db.Column(db.String(30), nullable=False, default='bail_habitation')
    status = db.Column(db.String(20), nullable=False, default='a_venir')  # a_venir, actif, expire
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    lot = db.relationship('Lot', back_populates='contracts')
    contact_links = db.relationship('ContractContact', back_populates='contract', lazy=True,
                                    cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('lot_id', 'title', 'start_date', name='uq_contract_lot_title_start'),
    )

    def __repr__(self):
        return f'<Contract {self.title}>'


# --- Association between contracts and their tenants / guarantors ---
class ContractContact(db.Model):
    __tablename__ = 'contract_contact'
    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(db.Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), nullable=False)
    contact_id = db.Column(db.Integer, db.ForeignKey('contact.id', ondelete='CASCADE'), nullable=False)
    role = db.Column(db.String(20), nullable=False)  # locataire or garant
    is_primary = db.Column(db.Boolean, default=False)

    contract = db.relationship('Contract', back_populates='contact_links')
    contact = db.relationship('Contact', back_populates='contract_links')

    __table_args__ = (
        db.UniqueConstraint('contract_id', 'contact_id', 'role', name='uq_contract_contact_role'),
    )


# --- Import job history ---
class ImportJob(db.Model):
    __tablename__ = 'import_job'
    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='importing')  # importing, completed, failed, rolled_back
    error_mode = db.Column(db.String(20), nullable=False, default='all_or_nothing')
    total_rows = db.Column(db.Integer, default=0)
    success_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    summary = db.Column(db.JSON, nullable=True)
    errors = db.Column(db.JSON, nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    started_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    completed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'filename': self.filename,
            'status': self.status,
            'error_mode': self.error_mode,
            'total_rows': self.total_rows,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'summary': self.summary,
            'duration_ms': self.duration_ms,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


# --- Invitation tokens for imported contacts ---
class ContactInvitation(db.Model):
    __tablename__ = 'contact_invitation'
    id = db.Column(db.Integer, primary_key=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contact.id', ondelete='CASCADE'), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    token = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(db.Boolean, default=False)

    contact = db.relationship('Contact')
