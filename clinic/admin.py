"""
Django admin registrations.

Operators use ``/admin/`` to inspect rows and fix data by hand.  Rules
and workflows are normally edited through the API so that the rules
cache is invalidated; saving a rule here invalidates it as well.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import (
    ActivityLog,
    Appointment,
    BusinessRule,
    Center,
    ClinicalSession,
    InsuranceApproval,
    InsurancePolicy,
    Invoice,
    InvoiceItem,
    Notification,
    Patient,
    PatientVisit,
    QueueItem,
    User,
    WebhookEvent,
    WhatsAppConversation,
    WhatsAppMessage,
    Workflow,
    WorkflowExecution,
)
from .services.rules import rules_engine


@admin.register(Center)
class CenterAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'phone', 'is_active', 'created_at')
    search_fields = ('id', 'name')


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('username', 'role', 'center', 'is_active', 'is_staff')
    list_filter = ('role', 'center', 'is_active')
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Clinic', {'fields': ('role', 'center', 'phone', 'specialty')}),
    )


class InsurancePolicyInline(admin.TabularInline):
    model = InsurancePolicy
    extra = 0


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'phone', 'center', 'status', 'created_at')
    list_filter = ('center', 'status')
    search_fields = ('name', 'phone', 'national_id')
    inlines = [InsurancePolicyInline]


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'date', 'time', 'status')
    list_filter = ('center', 'status', 'date')


@admin.register(QueueItem)
class QueueItemAdmin(admin.ModelAdmin):
    list_display = ('id', 'queue_date', 'queue_number', 'patient', 'status', 'priority', 'doctor')
    list_filter = ('center', 'queue_date', 'status')


@admin.register(PatientVisit)
class PatientVisitAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'status', 'visit_date')
    list_filter = ('center', 'status')


@admin.register(InsuranceApproval)
class InsuranceApprovalAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'insurance_provider', 'service_type', 'requested_amount', 'status')
    list_filter = ('center', 'status')


@admin.register(ClinicalSession)
class ClinicalSessionAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'session_type', 'status', 'date')
    list_filter = ('center', 'status')


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'patient', 'total', 'status', 'due_date', 'paid_at')
    list_filter = ('center', 'status')
    search_fields = ('invoice_number',)
    inlines = [InvoiceItemInline]


@admin.register(BusinessRule)
class BusinessRuleAdmin(admin.ModelAdmin):
    list_display = ('name', 'rule_type', 'action', 'priority', 'is_active', 'center')
    list_filter = ('rule_type', 'action', 'is_active')

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        rules_engine.invalidate()

    def delete_model(self, request, obj):
        super().delete_model(request, obj)
        rules_engine.invalidate()


@admin.register(Workflow)
class WorkflowAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'trigger_type', 'is_active', 'priority', 'version')
    list_filter = ('trigger_type', 'is_active')


@admin.register(WorkflowExecution)
class WorkflowExecutionAdmin(admin.ModelAdmin):
    list_display = ('id', 'workflow', 'status', 'current_step', 'started_at', 'completed_at')
    list_filter = ('status',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'type', 'title', 'is_read', 'created_at')
    list_filter = ('type', 'is_read')


@admin.register(ActivityLog)
class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'user', 'user_role', 'action', 'entity_type', 'entity_id', 'ip')
    list_filter = ('action', 'user_role')
    search_fields = ('entity_id',)


@admin.register(WhatsAppConversation)
class WhatsAppConversationAdmin(admin.ModelAdmin):
    list_display = ('phone', 'contact_name', 'patient', 'center', 'unread_count', 'last_message_at')


@admin.register(WhatsAppMessage)
class WhatsAppMessageAdmin(admin.ModelAdmin):
    list_display = ('id', 'conversation', 'direction', 'status', 'created_at')
    list_filter = ('direction', 'status')


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'provider', 'event_type', 'signature_valid', 'received_at')
    list_filter = ('provider', 'signature_valid')
