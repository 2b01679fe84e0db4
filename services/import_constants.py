"""
Import Constants - sheet names, column mappings, enumerations and limits
for the bulk Excel/CSV import pipeline.
"""

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class EntityType(str, Enum):
    """Entity types handled by the import, one per sheet"""
    COMPANIES = "companies"
    CONTACTS = "contacts"
    BUILDINGS = "buildings"
    LOTS = "lots"
    CONTRACTS = "contracts"


# Execution order. Later phases reference entities created by earlier ones.
IMPORT_PHASES: Tuple[EntityType, ...] = (
    EntityType.COMPANIES,
    EntityType.CONTACTS,
    EntityType.BUILDINGS,
    EntityType.LOTS,
    EntityType.CONTRACTS,
)

# Sheets a workbook must contain; Companies is optional
REQUIRED_SHEETS: Tuple[EntityType, ...] = (
    EntityType.BUILDINGS,
    EntityType.LOTS,
    EntityType.CONTACTS,
    EntityType.CONTRACTS,
)

# Order in which sheets are validated and reported
SHEET_ORDER: Tuple[EntityType, ...] = REQUIRED_SHEETS + (EntityType.COMPANIES,)

# Canonical sheet tags used in errors and APIs
SHEET_NAMES: Dict[EntityType, str] = {
    EntityType.BUILDINGS: "Buildings",
    EntityType.LOTS: "Lots",
    EntityType.CONTACTS: "Contacts",
    EntityType.CONTRACTS: "Contracts",
    EntityType.COMPANIES: "Companies",
}

# Display names used in the downloadable template
LOCALIZED_SHEET_NAMES: Dict[EntityType, str] = {
    EntityType.BUILDINGS: "Immeubles",
    EntityType.LOTS: "Lots",
    EntityType.CONTACTS: "Contacts",
    EntityType.CONTRACTS: "Baux",
    EntityType.COMPANIES: "Sociétés",
}

SHEET_ALIASES: Dict[EntityType, Tuple[str, ...]] = {
    EntityType.BUILDINGS: ("buildings", "immeubles", "batiments", "building"),
    EntityType.LOTS: ("lots", "lot", "units"),
    EntityType.CONTACTS: ("contacts", "contact"),
    EntityType.CONTRACTS: ("contracts", "baux", "bail", "leases", "contrats"),
    EntityType.COMPANIES: ("companies", "societes", "entreprises", "company"),
}

# Localized phase labels shown while an import runs
PHASE_LABELS: Dict[EntityType, str] = {
    EntityType.COMPANIES: "Sociétés",
    EntityType.CONTACTS: "Contacts",
    EntityType.BUILDINGS: "Immeubles",
    EntityType.LOTS: "Lots",
    EntityType.CONTRACTS: "Baux",
}

# Spreadsheet line of the first data row (1-based, after the header row)
HEADER_ROW_OFFSET = 2


class FileConstraints:
    """Upload limits"""
    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
    MAX_ROWS_PER_SHEET = 5000
    ALLOWED_EXTENSIONS = (".xlsx", ".xls", ".csv")
    ALLOWED_MIME_TYPES = (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "text/csv",
        "application/csv",
    )


# Enumerations ---------------------------------------------------------------

class LotCategory(str, Enum):
    APPARTEMENT = "appartement"
    COLLOCATION = "collocation"
    MAISON = "maison"
    GARAGE = "garage"
    LOCAL_COMMERCIAL = "local_commercial"
    AUTRE = "autre"


class ContactRole(str, Enum):
    LOCATAIRE = "locataire"
    PRESTATAIRE = "prestataire"
    PROPRIETAIRE = "proprietaire"


class ContractType(str, Enum):
    BAIL_HABITATION = "bail_habitation"
    BAIL_MEUBLE = "bail_meuble"


class ContractStatus(str, Enum):
    A_VENIR = "a_venir"
    ACTIF = "actif"
    EXPIRE = "expire"


class ContractContactRole(str, Enum):
    LOCATAIRE = "locataire"
    GARANT = "garant"


class InterventionType(str, Enum):
    PLOMBERIE = "plomberie"
    ELECTRICITE = "electricite"
    CHAUFFAGE = "chauffage"
    SERRURERIE = "serrurerie"
    PEINTURE = "peinture"
    MENAGE = "menage"
    JARDINAGE = "jardinage"
    AUTRE = "autre"


class Country(str, Enum):
    FRANCE = "france"
    BELGIQUE = "belgique"
    SUISSE = "suisse"
    LUXEMBOURG = "luxembourg"
    ALLEMAGNE = "allemagne"
    PAYS_BAS = "pays-bas"
    AUTRE = "autre"


DEFAULT_COUNTRY = Country.BELGIQUE

# Accepted spellings for enumerated cells, after normalize_token()
ROLE_ALIASES: Dict[str, ContactRole] = {
    "locataire": ContactRole.LOCATAIRE,
    "tenant": ContactRole.LOCATAIRE,
    "prestataire": ContactRole.PRESTATAIRE,
    "provider": ContactRole.PRESTATAIRE,
    "proprietaire": ContactRole.PROPRIETAIRE,
    "owner": ContactRole.PROPRIETAIRE,
}

CONTRACT_TYPE_ALIASES: Dict[str, ContractType] = {
    "bail_habitation": ContractType.BAIL_HABITATION,
    "bail_d_habitation": ContractType.BAIL_HABITATION,
    "habitation": ContractType.BAIL_HABITATION,
    "bail_meuble": ContractType.BAIL_MEUBLE,
    "meuble": ContractType.BAIL_MEUBLE,
}

COUNTRY_ALIASES: Dict[str, Country] = {
    "france": Country.FRANCE,
    "belgique": Country.BELGIQUE,
    "belgium": Country.BELGIQUE,
    "suisse": Country.SUISSE,
    "switzerland": Country.SUISSE,
    "luxembourg": Country.LUXEMBOURG,
    "allemagne": Country.ALLEMAGNE,
    "germany": Country.ALLEMAGNE,
    "pays-bas": Country.PAYS_BAS,
    "pays_bas": Country.PAYS_BAS,
    "netherlands": Country.PAYS_BAS,
    "autre": Country.AUTRE,
}


# Error codes and messages ---------------------------------------------------

class ImportErrorCode:
    """Codes attached to parse, validation and persistence errors"""
    # Parse
    FILE_REQUIRED = "FILE_REQUIRED"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNREADABLE_FILE = "UNREADABLE_FILE"
    MISSING_SHEET = "MISSING_SHEET"
    TOO_MANY_ROWS = "TOO_MANY_ROWS"
    NO_DATA = "NO_DATA"
    # Validation
    REQUIRED_FIELD = "REQUIRED_FIELD"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_ENUM = "INVALID_ENUM"
    INVALID_NUMBER = "INVALID_NUMBER"
    INVALID_DATE = "INVALID_DATE"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    TOO_LONG = "TOO_LONG"
    DUPLICATE_IN_FILE = "DUPLICATE_IN_FILE"
    REFERENCE_NOT_FOUND = "REFERENCE_NOT_FOUND"
    REFERENCE_AMBIGUOUS = "REFERENCE_AMBIGUOUS"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    # Persistence
    CONFLICT = "CONFLICT"
    PERSIST_ERROR = "PERSIST_ERROR"
    UNKNOWN = "UNKNOWN"


class ErrorMessages:
    """User facing messages, one factory per error code"""

    @staticmethod
    def required_field(field: str) -> str:
        return f'Field "{field}" is required'

    @staticmethod
    def invalid_format(field: str, expected: str) -> str:
        return f'Invalid format for "{field}" (expected: {expected})'

    @staticmethod
    def invalid_enum(field: str, allowed) -> str:
        return f'Invalid value for "{field}". Allowed values: {", ".join(allowed)}'

    @staticmethod
    def invalid_number(field: str) -> str:
        return f'"{field}" must be a valid number'

    @staticmethod
    def invalid_date(field: str) -> str:
        return f'"{field}" must be a valid date (YYYY-MM-DD or DD/MM/YYYY)'

    @staticmethod
    def out_of_range(field: str, minimum=None, maximum=None) -> str:
        if minimum is not None and maximum is not None:
            return f'"{field}" must be between {minimum} and {maximum}'
        if minimum is not None:
            return f'"{field}" must be at least {minimum}'
        return f'"{field}" must be at most {maximum}'

    @staticmethod
    def too_long(field: str, max_length: int) -> str:
        return f'"{field}" must not exceed {max_length} characters'

    @staticmethod
    def duplicate_in_file(field: str, value) -> str:
        return f'Duplicate "{field}" in file: "{value}"'

    @staticmethod
    def reference_not_found(entity: str, value) -> str:
        return f'{entity} "{value}" not found'

    @staticmethod
    def reference_ambiguous(entity: str, value) -> str:
        return f'{entity} "{value}" matches several rows'

    @staticmethod
    def independent_lot_address(field: str) -> str:
        return f'Field "{field}" is required for a lot without building'

    @staticmethod
    def conflict(details: str) -> str:
        return f"Conflict: {details}"

    @staticmethod
    def unknown(details: str) -> str:
        return f"Unexpected error: {details}"


# Expected formats shown in INVALID_FORMAT messages
FORMAT_HINTS: Dict[str, str] = {
    "postal_code": "4 to 10 digits",
    "email": "name@domain.tld",
    "vat_number": "country code followed by digits, e.g. BE0123456789",
    "website": "http(s)://...",
}

POSTAL_CODE_PATTERN = r"^\d{4,10}$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
VAT_NUMBER_PATTERN = r"^[A-Z]{2}[0-9A-Z]+$"
WEBSITE_PATTERN = r"^https?://.+"

EMAIL_RE = re.compile(EMAIL_PATTERN)


# Column mappings ------------------------------------------------------------

@dataclass(frozen=True)
class ColumnMapping:
    """One spreadsheet column: template header, target field and aliases"""
    header: str
    field: str
    required: bool = False
    aliases: Tuple[str, ...] = ()

    def matches(self, normalized_header: str) -> bool:
        candidates = (self.header,) + self.aliases
        return normalized_header in {normalize_header(c) for c in candidates}


COLUMN_MAPPINGS: Dict[EntityType, Tuple[ColumnMapping, ...]] = {
    EntityType.BUILDINGS: (
        ColumnMapping("Nom*", "name", True, ("name", "building name")),
        ColumnMapping("Adresse*", "address", True, ("address", "street")),
        ColumnMapping("Ville*", "city", True, ("city",)),
        ColumnMapping("Code Postal*", "postal_code", True, ("postal code", "zip", "zip code")),
        ColumnMapping("Pays", "country", False, ("country",)),
        ColumnMapping("Description", "description", False, ()),
    ),
    EntityType.LOTS: (
        ColumnMapping("Référence*", "reference", True, ("reference", "ref")),
        ColumnMapping("Nom Immeuble", "building_name", False, ("building name", "building", "immeuble")),
        ColumnMapping("Catégorie", "category", False, ("category",)),
        ColumnMapping("Étage", "floor", False, ("floor",)),
        ColumnMapping("Rue", "street", False, ("street", "address")),
        ColumnMapping("Ville", "city", False, ("city",)),
        ColumnMapping("Code Postal", "postal_code", False, ("postal code", "zip", "zip code")),
        ColumnMapping("Pays", "country", False, ("country",)),
        ColumnMapping("Description", "description", False, ()),
    ),
    EntityType.CONTACTS: (
        ColumnMapping("Nom*", "name", True, ("name", "full name")),
        ColumnMapping("Email", "email", False, ("e-mail", "mail")),
        ColumnMapping("Téléphone", "phone", False, ("phone", "telephone", "tel")),
        ColumnMapping("Rôle*", "role", True, ("role", "type")),
        ColumnMapping("Adresse", "address", False, ("address",)),
        ColumnMapping("Spécialité", "speciality", False, ("speciality", "specialty")),
        ColumnMapping("Société", "company_name", False, ("company", "company name")),
        ColumnMapping("Notes", "notes", False, ("note", "comments")),
    ),
    EntityType.CONTRACTS: (
        ColumnMapping("Titre*", "title", True, ("title",)),
        ColumnMapping("Réf Lot*", "lot_reference", True, ("lot reference", "lot ref", "lot", "reference lot")),
        ColumnMapping("Date Début*", "start_date", True, ("start date", "date debut", "start")),
        ColumnMapping("Durée (mois)*", "duration_months", True, ("duration (months)", "duration", "duree")),
        ColumnMapping("Loyer*", "rent_amount", True, ("rent", "rent amount")),
        ColumnMapping("Charges", "charges_amount", False, ("charges amount",)),
        ColumnMapping("Type", "contract_type", False, ("contract type",)),
        ColumnMapping("Garantie", "guarantee_amount", False, ("guarantee", "deposit")),
        ColumnMapping("Email Locataires", "tenant_emails", False, ("tenant emails", "tenants")),
        ColumnMapping("Email Garants", "guarantor_emails", False, ("guarantor emails", "guarantors")),
        ColumnMapping("Commentaires", "comments", False, ("comments", "notes")),
    ),
    EntityType.COMPANIES: (
        ColumnMapping("Nom*", "name", True, ("name", "company name")),
        ColumnMapping("Nom Légal", "legal_name", False, ("legal name",)),
        ColumnMapping("N° TVA", "vat_number", False, ("vat number", "vat", "tva")),
        ColumnMapping("Rue", "street", False, ("street",)),
        ColumnMapping("Numéro", "street_number", False, ("street number", "number")),
        ColumnMapping("Code Postal", "postal_code", False, ("postal code", "zip", "zip code")),
        ColumnMapping("Ville", "city", False, ("city",)),
        ColumnMapping("Pays", "country", False, ("country",)),
        ColumnMapping("Email", "email", False, ("e-mail", "mail")),
        ColumnMapping("Téléphone", "phone", False, ("phone", "telephone", "tel")),
        ColumnMapping("Site Web", "website", False, ("website", "web", "url")),
    ),
}


# Template example rows ------------------------------------------------------

TEMPLATE_EXAMPLE_ROWS: Dict[EntityType, List[list]] = {
    EntityType.BUILDINGS: [
        ["Résidence Leopold", "125 Avenue Louise", "Bruxelles", "1050", "belgique", "Immeuble standing, ascenseur"],
        ["Le Sablon", "8 Place du Petit Sablon", "Bruxelles", "1000", "belgique", "Immeuble historique"],
    ],
    EntityType.LOTS: [
        ["LEO-A01", "Résidence Leopold", "appartement", 0, "", "", "", "belgique", "Studio 30m²"],
        ["LEO-P01", "Résidence Leopold", "garage", -1, "", "", "", "belgique", "Place de parking"],
        ["SAB-A01", "Le Sablon", "appartement", 1, "", "", "", "belgique", "T2 50m²"],
        ["MAISON-01", "", "maison", "", "12 Rue des Champs", "Uccle", "1180", "belgique", "Maison 4 chambres"],
    ],
    EntityType.CONTACTS: [
        ["Marie Dubois", "marie.dubois@example.com", "+32 470 12 34 56", "locataire", "25 Rue de la Loi, 1000 Bruxelles", "", "", ""],
        ["Jean-Paul Garant", "jeanpaul.garant@example.com", "+32 470 98 76 54", "locataire", "", "", "", "Garant"],
        ["Luc Plombier", "luc@plomberie-express.be", "+32 2 555 01 01", "prestataire", "", "plomberie", "Plomberie Express SPRL", ""],
    ],
    EntityType.CONTRACTS: [
        ["Bail LEO-A01", "LEO-A01", "2024-01-01", 36, 850, 80, "bail_habitation", 1700,
         "marie.dubois@example.com", "jeanpaul.garant@example.com", "Studio balcon sud"],
    ],
    EntityType.COMPANIES: [
        ["Plomberie Express SPRL", "Plomberie Express SPRL", "BE0123456789", "Rue de l'Industrie", "45", "1000",
         "Bruxelles", "belgique", "contact@plomberie-express.be", "+32 2 555 01 01", "https://plomberie-express.be"],
    ],
}


# Normalization helpers ------------------------------------------------------

def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_header(value: str) -> str:
    """Normalize a header for matching: drop '*', accents, case and extra spaces"""
    text = strip_accents(str(value)).replace("*", " ").lower()
    return " ".join(text.split())


def normalize_token(value: str) -> str:
    """Normalize an enumerated cell value: lowercase, no accents, '_' for spaces and quotes"""
    text = strip_accents(str(value)).strip().lower()
    return re.sub(r"[\s']+", "_", text)


def normalize_key(value: Optional[str]) -> str:
    """Case-insensitive natural key component"""
    return " ".join(str(value).split()).casefold() if value is not None else ""


def resolve_sheet_entity(sheet_name: str) -> Optional[EntityType]:
    """Map a workbook sheet name to its entity type, if any"""
    normalized = normalize_header(sheet_name)
    for entity, aliases in SHEET_ALIASES.items():
        if normalized in aliases:
            return entity
    return None


def column_field(entity: EntityType, header: str) -> Optional[str]:
    """Return the record field a header maps to for this entity"""
    normalized = normalize_header(header)
    for mapping in COLUMN_MAPPINGS[entity]:
        if mapping.matches(normalized):
            return mapping.field
    return None


def template_headers(entity: EntityType) -> List[str]:
    return [mapping.header for mapping in COLUMN_MAPPINGS[entity]]
