from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..utils.numbers import empty_to_none, to_numeric_or_none

TransactionType = Literal["purchase", "sale", "lease", "rental"]
TransactionStatus = Literal["pending", "closed", "cancelled"]
Priority = Literal["low", "medium", "high", "urgent"]
TaskStatus = Literal["pending", "completed", "cancelled", "overdue", "not_applicable"]
AnchorDate = Literal["contract", "due_diligence", "inspection", "appraisal", "closing"]

MONEY_FIELDS = (
    "purchase_price",
    "commission_rate",
    "seller_commission_rate",
    "buyer_commission_rate",
    "commission_flat_fee",
    "closing_fee",
    "brokerage_fee",
    "due_diligence_money",
    "earnest_money_deposit",
    "closing_costs",
)
DATE_FIELDS = ("contract_date", "closing_date", "due_diligence_date", "inspection_date", "appraisal_date")
PARTY_FIELDS = (
    "property_id",
    "listing_agent_id",
    "co_listing_agent_id",
    "buyer_agent_id",
    "co_buyer_agent_id",
    "lender_id",
    "attorney_id",
)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: str = Field(validation_alias="role_name")
    is_active: bool


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    user: UserRead


# --- Transactions ---


class TransactionPayload(BaseModel):
    """Fields shared by create and update; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    transaction_type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    priority: Optional[Priority] = None

    property_id: Optional[int] = None
    listing_agent_id: Optional[int] = None
    co_listing_agent_id: Optional[int] = None
    buyer_agent_id: Optional[int] = None
    co_buyer_agent_id: Optional[int] = None
    lender_id: Optional[int] = None
    attorney_id: Optional[int] = None

    purchase_price: Optional[Decimal] = None
    commission_rate: Optional[Decimal] = None
    seller_commission_rate: Optional[Decimal] = None
    buyer_commission_rate: Optional[Decimal] = None
    commission_flat_fee: Optional[Decimal] = None
    closing_fee: Optional[Decimal] = None
    brokerage_fee: Optional[Decimal] = None
    due_diligence_money: Optional[Decimal] = None
    earnest_money_deposit: Optional[Decimal] = None
    closing_costs: Optional[Decimal] = None

    contract_date: Optional[date] = None
    closing_date: Optional[date] = None
    due_diligence_date: Optional[date] = None
    inspection_date: Optional[date] = None
    appraisal_date: Optional[date] = None

    notes: Optional[str] = None
    buyer_ids: Optional[List[int]] = None
    seller_ids: Optional[List[int]] = None

    @field_validator(*MONEY_FIELDS, mode="before")
    @classmethod
    def _coerce_numeric(cls, value):
        return to_numeric_or_none(value)

    @field_validator(*DATE_FIELDS, *PARTY_FIELDS, mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return empty_to_none(value)


class TransactionCreate(TransactionPayload):
    transaction_type: TransactionType


class TransactionUpdate(TransactionPayload):
    pass


class PartySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_type: str
    status: str
    priority: str
    property_id: Optional[int] = None
    listing_agent_id: Optional[int] = None
    co_listing_agent_id: Optional[int] = None
    buyer_agent_id: Optional[int] = None
    co_buyer_agent_id: Optional[int] = None
    lender_id: Optional[int] = None
    attorney_id: Optional[int] = None
    purchase_price: Optional[float] = None
    commission_rate: Optional[float] = None
    seller_commission_rate: Optional[float] = None
    buyer_commission_rate: Optional[float] = None
    commission_flat_fee: Optional[float] = None
    closing_fee: Optional[float] = None
    brokerage_fee: Optional[float] = None
    due_diligence_money: Optional[float] = None
    earnest_money_deposit: Optional[float] = None
    closing_costs: Optional[float] = None
    contract_date: Optional[date] = None
    closing_date: Optional[date] = None
    due_diligence_date: Optional[date] = None
    inspection_date: Optional[date] = None
    appraisal_date: Optional[date] = None
    notes: Optional[str] = None
    google_drive_folder_id: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TransactionListItem(TransactionRead):
    property_address: Optional[str] = None
    property_city: Optional[str] = None
    listing_agent_name: Optional[str] = None
    buyer_agent_name: Optional[str] = None
    buyers: List[PartySummary] = []
    sellers: List[PartySummary] = []
    total_tasks: int = 0
    completed_tasks: int = 0
    progress_percent: Optional[int] = None


class TransactionEnvelope(BaseModel):
    transaction: TransactionRead


class TransactionListResponse(BaseModel):
    transactions: List[TransactionListItem]


class PropertyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    address: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    square_feet: Optional[int] = None


class AgentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None


class LenderSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    company_name: str
    contact_name: Optional[str] = None


class AttorneySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    firm_name: Optional[str] = None
    attorney_name: str


class TransactionDetail(BaseModel):
    transaction: TransactionRead
    property: Optional[PropertyRead] = None
    buyers: List[PartySummary] = []
    sellers: List[PartySummary] = []
    listing_agent: Optional[AgentSummary] = None
    co_listing_agent: Optional[AgentSummary] = None
    buyer_agent: Optional[AgentSummary] = None
    co_buyer_agent: Optional[AgentSummary] = None
    lender: Optional[LenderSummary] = None
    attorney: Optional[AttorneySummary] = None


# --- Assignments ---


class AssignmentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assistant_user_id: int = Field(alias="assistantUserId")
    notes: Optional[str] = None


class AssignmentRead(BaseModel):
    id: int
    transaction_id: int
    assigned_to_user_id: int
    assigned_by_user_id: Optional[int] = None
    notes: Optional[str] = None
    assigned_at: datetime
    assigned_to_name: Optional[str] = None
    assigned_to_email: Optional[str] = None
    assigned_by_name: Optional[str] = None


class AssignmentListResponse(BaseModel):
    assignments: List[AssignmentRead]


class AssistantRead(BaseModel):
    id: int
    email: str
    full_name: str


# --- Follow-up tasks ---


class TaskCreate(BaseModel):
    transaction_id: int
    event_name: str = Field(min_length=1)
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: Priority = "medium"
    status: TaskStatus = "pending"
    assigned_to_user_id: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("due_date", "assigned_to_user_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return empty_to_none(value)


class TaskUpdate(BaseModel):
    event_name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None
    assigned_to_user_id: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("due_date", "assigned_to_user_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return empty_to_none(value)


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: int
    template_id: Optional[int] = None
    event_name: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: str
    status: str
    assigned_to_user_id: Optional[int] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    property_address: Optional[str] = None
    transaction_type: Optional[str] = None
    assigned_to_name: Optional[str] = None
    is_overdue: bool = False


class TaskListResponse(BaseModel):
    followUps: List[TaskRead]


class TaskEnvelope(BaseModel):
    followUp: TaskRead


class TaskUpdateResponse(BaseModel):
    followUp: TaskRead
    transaction_auto_closed: bool = False
    message: Optional[str] = None


# --- Templates ---


class TemplateCreate(BaseModel):
    transaction_type: TransactionType
    event_name: str = Field(min_length=1)
    description: Optional[str] = None
    anchor: AnchorDate = "contract"
    days_offset: int = 0
    priority: Priority = "medium"
    sort_order: int = 0
    is_active: bool = True


class TemplateUpdate(BaseModel):
    transaction_type: Optional[TransactionType] = None
    event_name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    anchor: Optional[AnchorDate] = None
    days_offset: Optional[int] = None
    priority: Optional[Priority] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class TemplateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_type: str
    event_name: str
    description: Optional[str] = None
    anchor: str
    days_offset: int
    priority: str
    sort_order: int
    is_active: bool


class TemplateListResponse(BaseModel):
    templates: List[TemplateRead]


# --- Documents / Google Drive ---


class DocumentRegister(BaseModel):
    name: str = Field(min_length=1)
    google_drive_id: str = Field(min_length=1)
    google_drive_url: str = Field(min_length=1)
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    task_id: Optional[int] = None
    transaction_id: Optional[int] = None
    document_type_id: Optional[int] = None
    shared: bool = False

    @field_validator("task_id", "transaction_id", "document_type_id", "file_size", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return empty_to_none(value)


class DocumentRead(BaseModel):
    id: int
    name: str
    transaction_id: Optional[int] = None
    task_id: Optional[int] = None
    google_drive_id: Optional[str] = None
    google_drive_url: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    uploaded_by_user_id: Optional[int] = None
    uploaded_by_name: Optional[str] = None
    document_type_id: Optional[int] = None
    document_type_name: Optional[str] = None
    drive_status: str
    last_error: Optional[str] = None
    created_at: datetime


class DocumentEnvelope(BaseModel):
    document: DocumentRead


class DocumentListResponse(BaseModel):
    documents: List[DocumentRead]


class DocumentTypeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None


class UploadTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: Optional[int] = Field(default=None, alias="transactionId")


class UploadTokenResponse(BaseModel):
    accessToken: str
    folderId: Optional[str] = None


class SetPublicRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId", min_length=1)


class SetPublicResponse(BaseModel):
    success: bool
    webViewLink: Optional[str] = None


class FixPermissionsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: Optional[int] = Field(default=None, alias="transactionId")


class FixPermissionsResponse(BaseModel):
    message: str
    fixed: int
    skipped: int
    failed: int
    errors: List[str] = []


class MigrationReportItem(BaseModel):
    id: int
    name: str
    transaction_id: Optional[int] = None
    google_drive_id: Optional[str] = None
    drive_status: str
    issue: str


class MigrationReportResponse(BaseModel):
    total: int
    documents: List[MigrationReportItem]


class DriveFolder(BaseModel):
    id: str
    name: str


class DriveFoldersResponse(BaseModel):
    connected: bool
    folders: List[DriveFolder] = []
    currentFolder: Optional[DriveFolder] = None


class FolderSelectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    folder_id: Optional[str] = Field(default=None, alias="folderId")


class DriveStatusResponse(BaseModel):
    connected: bool
    isAdmin: bool


class DriveAuthResponse(BaseModel):
    authUrl: str


# --- Portal ---


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None
    transaction_id: Optional[int] = None
    task_id: Optional[int] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: List[NotificationRead]
    unreadCount: int


class NotificationPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notification_id: Optional[int] = Field(default=None, alias="notificationId")
    mark_all_as_read: bool = Field(default=False, alias="markAllAsRead")


class NotificationPreferencesUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sms_notifications_enabled: Optional[bool] = Field(default=None, alias="smsNotificationsEnabled")
    email_notifications_enabled: Optional[bool] = Field(default=None, alias="emailNotificationsEnabled")


class NotificationPreferencesRead(BaseModel):
    smsNotificationsEnabled: bool
    emailNotificationsEnabled: bool


class PortalTransactionItem(BaseModel):
    id: int
    transaction_type: str
    status: str
    property_address: Optional[str] = None
    closing_date: Optional[date] = None
    role: str
    total_tasks: int
    completed_tasks: int
    progress_percent: Optional[int] = None


class PortalTransactionListResponse(BaseModel):
    transactions: List[PortalTransactionItem]
