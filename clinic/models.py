"""
Database models for the medical center backend.

Every clinical or financial row belongs to a :class:`Center` (the
tenant).  Users bound to a center only see that center's rows; a user
without a center is a platform operator.  Status fields use plain
string choices so that the JSON responses mirror what the dashboards
expect.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class Center(models.Model):
    """A medical center (tenant)."""
    id = models.CharField(
        max_length=32,
        primary_key=True,
        help_text="Short unique identifier for the center (e.g. 'riyadh-main')",
    )
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32, blank=True)
    address = models.TextField(blank=True)
    # Maps inbound WhatsApp webhooks to a tenant
    whatsapp_phone_number_id = models.CharField(max_length=64, blank=True, db_index=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class User(AbstractUser):
    """Custom user model with a role string and a center binding."""
    ROLE_ADMIN = 'admin'
    ROLE_DOCTOR = 'doctor'
    ROLE_RECEPTION = 'reception'
    ROLE_STAFF = 'staff'
    ROLE_SUPERVISOR = 'supervisor'
    ROLE_PATIENT = 'patient'
    ROLE_GUARDIAN = 'guardian'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_RECEPTION, 'Reception'),
        (ROLE_STAFF, 'Staff'),
        (ROLE_SUPERVISOR, 'Supervisor'),
        (ROLE_PATIENT, 'Patient'),
        (ROLE_GUARDIAN, 'Guardian'),
    ]
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default=ROLE_PATIENT, db_index=True)
    center = models.ForeignKey(
        Center, null=True, blank=True, on_delete=models.SET_NULL, related_name='users', db_index=True
    )
    phone = models.CharField(max_length=32, blank=True)
    specialty = models.CharField(max_length=128, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username


class Patient(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
    ]
    GENDER_CHOICES = [
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    ]
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='patients')
    # Portal account for the patient themself, if any
    user = models.OneToOneField(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='patient_record'
    )
    guardian = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='wards'
    )
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32, db_index=True)
    email = models.EmailField(blank=True)
    nationality = models.CharField(max_length=64, blank=True)
    national_id = models.CharField(max_length=64, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='patients_created'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['center', 'status', 'created_at'], name='patient_center_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.phone})"


class InsurancePolicy(models.Model):
    """An insurance policy on file for a patient."""
    VERIFICATION_CHOICES = [
        ('pending', 'Pending'),
        ('verified', 'Verified'),
        ('rejected', 'Rejected'),
    ]
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='policies')
    provider = models.CharField(max_length=128)
    policy_number = models.CharField(max_length=64)
    policy_holder_name = models.CharField(max_length=255, blank=True)
    coverage_type = models.CharField(max_length=64, blank=True)
    coverage_start_date = models.DateField(null=True, blank=True)
    coverage_end_date = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    verification_status = models.CharField(max_length=16, choices=VERIFICATION_CHOICES, default='pending')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.provider}:{self.policy_number} -> {self.patient_id}"


class Appointment(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='appointments')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='appointments')
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='doctor_appointments'
    )
    date = models.DateField()
    time = models.TimeField(null=True, blank=True)
    duration = models.PositiveIntegerField(default=30)
    appointment_type = models.CharField(max_length=64, default='consultation')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='appointments_created'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['center', 'date', 'status'], name='appt_center_date_status_idx'),
            models.Index(fields=['doctor', 'date'], name='appt_doctor_date_idx'),
        ]

    def __str__(self) -> str:
        return f"Appointment {self.id} p={self.patient_id} {self.date}"


class QueueItem(models.Model):
    """An entry in the reception queue for one day."""
    STATUS_CHECKED_IN = 'checked_in'
    STATUS_WAITING = 'waiting'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_NO_SHOW = 'no_show'
    STATUS_CHOICES = [
        (STATUS_CHECKED_IN, 'Checked in'),
        (STATUS_WAITING, 'Waiting'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_NO_SHOW, 'No show'),
    ]
    ACTIVE_STATUSES = (STATUS_CHECKED_IN, STATUS_WAITING, STATUS_IN_PROGRESS)
    PRIORITY_CHOICES = [
        ('normal', 'Normal'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ]
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='queue_items')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='queue_items')
    appointment = models.ForeignKey(
        Appointment, null=True, blank=True, on_delete=models.SET_NULL, related_name='queue_items'
    )
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='assigned_queue_items'
    )
    queue_date = models.DateField(db_index=True)
    queue_number = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_CHECKED_IN, db_index=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='normal', db_index=True)
    service_type = models.CharField(max_length=64, blank=True)
    notes = models.TextField(blank=True)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    called_at = models.DateTimeField(null=True, blank=True)
    confirmed_to_doctor_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['center', 'queue_date', 'queue_number'], name='uniq_queue_number_per_day'),
        ]

    def __str__(self) -> str:
        return f"#{self.queue_number} {self.queue_date} p={self.patient_id}"


class PatientVisit(models.Model):
    """Created when reception hands a patient over to a doctor."""
    STATUS_CONFIRMED = 'confirmed_to_doctor'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_CONFIRMED, 'Confirmed to doctor'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='visits')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='visits')
    appointment = models.ForeignKey(
        Appointment, null=True, blank=True, on_delete=models.SET_NULL, related_name='visits'
    )
    queue_item = models.ForeignKey(
        QueueItem, null=True, blank=True, on_delete=models.SET_NULL, related_name='visits'
    )
    doctor = models.ForeignKey(User, on_delete=models.CASCADE, related_name='doctor_visits')
    confirmed_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='visits_confirmed'
    )
    visit_date = models.DateTimeField()
    check_in_time = models.DateTimeField(null=True, blank=True)
    confirmed_to_doctor_time = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=24, choices=STATUS_CHOICES, default=STATUS_CONFIRMED, db_index=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['doctor', 'status', 'created_at'], name='visit_doctor_status_idx'),
        ]

    def __str__(self) -> str:
        return f"Visit {self.id} p={self.patient_id} d={self.doctor_id} ({self.status})"


class InsuranceApproval(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    ]
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='insurance_approvals')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='insurance_approvals')
    visit = models.ForeignKey(
        PatientVisit, null=True, blank=True, on_delete=models.SET_NULL, related_name='insurance_approvals'
    )
    insurance_provider = models.CharField(max_length=128)
    service_type = models.CharField(max_length=64)
    requested_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    approval_number = models.CharField(max_length=64, blank=True)
    approval_date = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    requested_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='insurance_requests'
    )
    decided_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='insurance_decisions'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Approval {self.id} p={self.patient_id} ({self.status})"


class ClinicalSession(models.Model):
    """A doctor's clinical/therapy session with a patient."""
    STATUS_CHOICES = [
        ('scheduled', 'Scheduled'),
        ('in_progress', 'In progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='sessions')
    doctor = models.ForeignKey(User, on_delete=models.CASCADE, related_name='clinical_sessions')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='sessions')
    appointment = models.ForeignKey(
        Appointment, null=True, blank=True, on_delete=models.SET_NULL, related_name='sessions'
    )
    visit = models.ForeignKey(
        PatientVisit, null=True, blank=True, on_delete=models.SET_NULL, related_name='sessions'
    )
    insurance_approval = models.ForeignKey(
        InsuranceApproval, null=True, blank=True, on_delete=models.SET_NULL, related_name='sessions'
    )
    date = models.DateTimeField()
    duration = models.PositiveIntegerField(default=30)
    session_type = models.CharField(max_length=64)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default='scheduled', db_index=True)
    chief_complaint = models.TextField(blank=True)
    assessment = models.TextField(blank=True)
    plan = models.TextField(blank=True)
    diagnosis = models.TextField(blank=True)
    treatment = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Session {self.id} d={self.doctor_id} p={self.patient_id}"


class Invoice(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_PAID = 'paid'
    STATUS_OVERDUE = 'overdue'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PAID, 'Paid'),
        (STATUS_OVERDUE, 'Overdue'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    UNPAID_STATUSES = (STATUS_PENDING, STATUS_OVERDUE)
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='invoices')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='invoices')
    invoice_number = models.CharField(max_length=48, unique=True)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=4, default=0)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    due_date = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=32, blank=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='invoices_created'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['center', 'status', 'created_at'], name='invoice_center_status_idx'),
            models.Index(fields=['patient', 'status'], name='invoice_patient_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.invoice_number} ({self.status})"


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')
    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)

    def __str__(self) -> str:
        return f"{self.description} x{self.quantity}"


class BusinessRule(models.Model):
    """An admin-editable rule evaluated by :mod:`clinic.services.rules`."""
    TYPE_CHOICES = [
        ('payment_required', 'Payment required'),
        ('insurance_approval_required', 'Insurance approval required'),
        ('first_visit_free', 'First visit free'),
        ('session_data_complete', 'Session data complete'),
        ('insurance_template_match', 'Insurance template match'),
        ('error_pattern_avoid', 'Error pattern avoid'),
    ]
    ACTION_ALLOW = 'allow'
    ACTION_BLOCK = 'block'
    ACTION_WARN = 'warn'
    ACTION_REQUIRE_APPROVAL = 'require_approval'
    ACTION_CHOICES = [
        (ACTION_ALLOW, 'Allow'),
        (ACTION_BLOCK, 'Block'),
        (ACTION_WARN, 'Warn'),
        (ACTION_REQUIRE_APPROVAL, 'Require approval'),
    ]
    # Null center means the rule applies to every center
    center = models.ForeignKey(
        Center, null=True, blank=True, on_delete=models.CASCADE, related_name='business_rules'
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    rule_type = models.CharField(max_length=32, choices=TYPE_CHOICES)
    condition = models.JSONField(default=dict)
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    priority = models.IntegerField(default=0, db_index=True)
    is_active = models.BooleanField(default=True, db_index=True)
    applies_to = models.JSONField(default=list)
    error_message = models.CharField(max_length=500, blank=True)
    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='business_rules_created'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} [{self.action}] p={self.priority}"


class Workflow(models.Model):
    TRIGGER_CHOICES = [
        ('manual', 'Manual'),
        ('event', 'Event'),
        ('schedule', 'Schedule'),
    ]
    center = models.ForeignKey(
        Center, null=True, blank=True, on_delete=models.CASCADE, related_name='workflows'
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=64)
    trigger_type = models.CharField(max_length=16, choices=TRIGGER_CHOICES)
    trigger_config = models.JSONField(default=dict, blank=True)
    steps = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    priority = models.IntegerField(default=0)
    version = models.PositiveIntegerField(default=1)
    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='workflows_created'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} v{self.version}"


class WorkflowExecution(models.Model):
    STATUS_CHOICES = [
        ('running', 'Running'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
    ]
    workflow = models.ForeignKey(Workflow, on_delete=models.CASCADE, related_name='executions')
    entity_type = models.CharField(max_length=64, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default='running')
    current_step = models.PositiveIntegerField(default=0)
    step_results = models.JSONField(default=list, blank=True)
    error_message = models.TextField(blank=True)
    triggered_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='workflow_executions'
    )
    started_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"Execution {self.id} of {self.workflow_id} ({self.status})"


class Notification(models.Model):
    TYPE_CHOICES = [
        ('appointment', 'Appointment'),
        ('invoice', 'Invoice'),
        ('payment', 'Payment'),
        ('insurance', 'Insurance'),
        ('message', 'Message'),
        ('system', 'System'),
        ('patient_registration', 'Patient registration'),
        ('doctor_assignment', 'Doctor assignment'),
    ]
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    patient = models.ForeignKey(
        Patient, null=True, blank=True, on_delete=models.SET_NULL, related_name='notifications'
    )
    type = models.CharField(max_length=32, choices=TYPE_CHOICES, default='system')
    title = models.CharField(max_length=255)
    message = models.TextField()
    entity_type = models.CharField(max_length=64, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['user', 'is_read', 'created_at'], name='notif_user_read_idx')]

    def __str__(self) -> str:
        return f"{self.title} -> {self.user_id}"


class ActivityLog(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    user_role = models.CharField(max_length=16, blank=True)
    center = models.ForeignKey(Center, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    entity_type = models.CharField(max_length=64, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    detail = models.JSONField(default=dict, blank=True)
    ip = models.GenericIPAddressField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='activity_action_created_idx'),
            models.Index(fields=['entity_type', 'entity_id', 'created_at'], name='activity_entity_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.user_id}@{self.created_at:%F %T}"


class WhatsAppConversation(models.Model):
    center = models.ForeignKey(Center, on_delete=models.CASCADE, related_name='whatsapp_conversations')
    patient = models.ForeignKey(
        Patient, null=True, blank=True, on_delete=models.SET_NULL, related_name='whatsapp_conversations'
    )
    phone = models.CharField(max_length=32)
    contact_name = models.CharField(max_length=255, blank=True)
    unread_count = models.PositiveIntegerField(default=0)
    last_message_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['center', 'phone'], name='uniq_whatsapp_conversation'),
        ]

    def __str__(self) -> str:
        return f"wa:{self.phone} @ {self.center_id}"


class WhatsAppMessage(models.Model):
    DIRECTION_CHOICES = [
        ('inbound', 'Inbound'),
        ('outbound', 'Outbound'),
    ]
    STATUS_CHOICES = [
        ('received', 'Received'),
        ('queued', 'Queued'),
        ('sent', 'Sent'),
        ('delivered', 'Delivered'),
        ('read', 'Read'),
        ('failed', 'Failed'),
    ]
    conversation = models.ForeignKey(WhatsAppConversation, on_delete=models.CASCADE, related_name='messages')
    direction = models.CharField(max_length=10, choices=DIRECTION_CHOICES)
    body = models.TextField(blank=True)
    message_type = models.CharField(max_length=32, default='text')
    provider_message_id = models.CharField(max_length=128, blank=True, db_index=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES)
    sent_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='whatsapp_messages_sent'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['conversation', 'created_at'], name='wa_msg_conv_created_idx')]

    def __str__(self) -> str:
        return f"wamsg {self.id} {self.direction} ({self.status})"


class WebhookEvent(models.Model):
    """Raw inbound webhook payloads, kept for replay and debugging."""
    provider = models.CharField(max_length=16, db_index=True)
    event_type = models.CharField(max_length=64, blank=True)
    payload = models.JSONField(default=dict)
    signature_valid = models.BooleanField(default=False)
    received_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.provider}:{self.event_type} @ {self.received_at:%F %T}"
