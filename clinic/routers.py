"""
URL mappings for the medical center API.

Paths carry no trailing slash.  Detail routes take integer primary keys.
"""
from django.urls import include, path

from .views import (
    appointments,
    auth,
    billing,
    dashboard,
    doctor,
    health,
    insurance,
    notifications,
    patients,
    reception,
    rules,
    users,
    webhooks,
    whatsapp,
    workflows,
)

urlpatterns = [
    # django_prometheus serves /metrics
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),

    # Authentication
    path('api/auth/login', auth.login_view, name='auth-login'),
    path('api/auth/logout', auth.logout_view, name='auth-logout'),
    path('api/auth/me', auth.me, name='auth-me'),
    path('api/auth/refresh', auth.refresh_view, name='auth-refresh'),

    # Users
    path('api/users', users.users, name='users'),
    path('api/users/<int:pk>', users.user_detail, name='user-detail'),

    # Patients
    path('api/patients', patients.patients, name='patients'),
    path('api/patients/<int:pk>', patients.patient_detail, name='patient-detail'),
    path('api/patients/<int:pk>/insurance', patients.patient_insurance, name='patient-insurance'),
    path('api/patients/<int:pk>/visits', patients.patient_visits, name='patient-visits'),

    # Appointments
    path('api/appointments', appointments.appointments, name='appointments'),
    path('api/appointments/<int:pk>', appointments.appointment_detail, name='appointment-detail'),

    # Reception
    path('api/reception/queue', reception.queue, name='reception-queue'),
    path('api/reception/queue/<int:pk>', reception.queue_item, name='reception-queue-item'),
    path('api/reception/queue/<int:pk>/confirm-to-doctor', reception.confirm_to_doctor,
         name='reception-confirm-to-doctor'),
    path('api/reception/payment/verify', reception.payment_verify, name='reception-payment-verify'),
    path('api/reception/insurance/request-approval', reception.request_insurance_approval,
         name='reception-request-approval'),
    path('api/reception/insurance/check-approval', reception.check_insurance_approval,
         name='reception-check-approval'),
    path('api/reception/dashboard/stats', reception.dashboard_stats, name='reception-stats'),

    # Insurance
    path('api/insurance/approvals', insurance.approvals, name='insurance-approvals'),
    path('api/insurance/approvals/<int:pk>/decision', insurance.approval_decision, name='insurance-decision'),

    # Doctor
    path('api/doctor/queue', doctor.doctor_queue, name='doctor-queue'),
    path('api/doctor/visits/<int:pk>/status', doctor.visit_status, name='doctor-visit-status'),
    path('api/doctor/sessions', doctor.sessions, name='doctor-sessions'),
    path('api/doctor/sessions/validate', doctor.validate_session, name='doctor-session-validate'),
    path('api/doctor/sessions/<int:pk>', doctor.session_detail, name='doctor-session-detail'),
    path('api/doctor/dashboard/stats', doctor.dashboard_stats, name='doctor-stats'),

    # Billing
    path('api/billing/invoices', billing.invoices, name='invoices'),
    path('api/billing/invoices/<int:pk>', billing.invoice_detail, name='invoice-detail'),
    path('api/billing/invoices/<int:pk>/pay', billing.pay_invoice, name='invoice-pay'),
    path('api/billing/summary', billing.summary, name='billing-summary'),

    # Administration
    path('api/admin/business-rules', rules.business_rules, name='business-rules'),
    path('api/admin/business-rules/evaluate', rules.evaluate_rules, name='business-rules-evaluate'),
    path('api/admin/business-rules/<int:pk>', rules.business_rule_detail, name='business-rule-detail'),
    path('api/admin/workflows', workflows.workflows, name='workflows'),
    path('api/admin/workflows/<int:pk>', workflows.workflow_detail, name='workflow-detail'),
    path('api/admin/workflows/<int:pk>/execute', workflows.execute, name='workflow-execute'),
    path('api/admin/workflows/<int:pk>/executions', workflows.executions, name='workflow-executions'),
    path('api/admin/dashboard/stats', dashboard.admin_dashboard, name='admin-stats'),

    # Notifications and audit
    path('api/notifications', notifications.notifications, name='notifications'),
    path('api/notifications/mark-all-read', notifications.mark_all_read, name='notifications-mark-all-read'),
    path('api/notifications/<int:pk>', notifications.notification_detail, name='notification-detail'),
    path('api/activity-logs', notifications.activity_logs, name='activity-logs'),

    # WhatsApp
    path('api/whatsapp/conversations', whatsapp.conversations, name='whatsapp-conversations'),
    path('api/whatsapp/conversations/<int:pk>', whatsapp.conversation_detail, name='whatsapp-conversation'),
    path('api/whatsapp/messages', whatsapp.send_message, name='whatsapp-messages'),

    # Webhooks
    path('api/webhooks/whatsapp', webhooks.whatsapp_webhook, name='webhook-whatsapp'),
    path('api/webhooks/slack', webhooks.slack_webhook, name='webhook-slack'),
]
