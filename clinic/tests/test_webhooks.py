import hashlib
import hmac
import json
import time

import pytest
from django.test import override_settings

from clinic.models import Notification, WebhookEvent, WhatsAppConversation, WhatsAppMessage
from clinic.services.webhooks import verify_slack_signature, verify_whatsapp_signature
from clinic.services.whatsapp import ingest_webhook

WHATSAPP_URL = '/api/webhooks/whatsapp'
SLACK_URL = '/api/webhooks/slack'
SECRET = 'shh-its-a-secret'


def sign(secret, body):
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def inbound(phone_number_id='PNID-1', *, msg_id='wamid.1', sender='966501234501', text='Hello', statuses=None):
    value = {
        'metadata': {'phone_number_id': phone_number_id},
        'contacts': [{'wa_id': sender, 'profile': {'name': 'Sara'}}],
        'messages': [{'id': msg_id, 'from': sender, 'type': 'text', 'text': {'body': text}}],
    }
    if statuses is not None:
        value = {'metadata': {'phone_number_id': phone_number_id}, 'statuses': statuses}
    return {'object': 'whatsapp_business_account', 'entry': [{'changes': [{'value': value}]}]}


class TestSignatures:
    def test_whatsapp(self):
        body = b'{"object":"whatsapp_business_account"}'
        assert verify_whatsapp_signature(body, 'sha256=' + sign(SECRET, body), SECRET)
        assert not verify_whatsapp_signature(body, sign(SECRET, body), SECRET)
        assert not verify_whatsapp_signature(body, 'sha256=' + sign('other', body), SECRET)
        assert not verify_whatsapp_signature(body, None, SECRET)

    def test_slack(self):
        body = b'{"type":"event_callback"}'
        ts = '1700000000'
        signature = 'v0=' + sign(SECRET, b'v0:' + ts.encode() + b':' + body)
        assert verify_slack_signature(body, ts, signature, SECRET, now=1700000100)
        assert not verify_slack_signature(body, ts, signature, SECRET, now=1700000301)
        assert not verify_slack_signature(body + b' ', ts, signature, SECRET, now=1700000100)
        assert not verify_slack_signature(body, 'yesterday', signature, SECRET)
        assert not verify_slack_signature(body, ts, None, SECRET)


@pytest.mark.django_db
class TestIngest:
    def test_message_creates_conversation_linked_to_patient(self, center, patient, reception):
        counts = ingest_webhook(inbound())
        assert counts == {'messages': 1, 'statuses': 0, 'skipped': 0}
        conv = WhatsAppConversation.objects.get()
        assert conv.center_id == center.id
        assert conv.phone == '966501234501'
        assert conv.patient_id == patient.id
        assert conv.contact_name == 'Sara'
        assert conv.unread_count == 1
        assert WhatsAppMessage.objects.get().body == 'Hello'
        note = Notification.objects.get(user=reception)
        assert note.message == 'New message from 966501234501'

    def test_duplicate_delivery_is_skipped(self, center):
        ingest_webhook(inbound())
        assert ingest_webhook(inbound()) == {'messages': 0, 'statuses': 0, 'skipped': 1}
        assert WhatsAppMessage.objects.count() == 1

    def test_unknown_number_is_skipped(self, center):
        assert ingest_webhook(inbound('PNID-UNKNOWN'))['skipped'] == 1
        assert not WhatsAppConversation.objects.exists()

    def test_other_objects_are_ignored(self, center):
        assert ingest_webhook({'object': 'page', 'entry': []}) == {'messages': 0, 'statuses': 0, 'skipped': 0}

    def test_statuses_only_move_forward(self, center):
        ingest_webhook(inbound(msg_id='wamid.9'))
        msg = WhatsAppMessage.objects.get()
        msg.status = 'sent'
        msg.save()

        def push(state):
            return ingest_webhook(inbound(statuses=[{'id': 'wamid.9', 'status': state}]))['statuses']

        assert push('read') == 1
        assert push('delivered') == 0
        msg.refresh_from_db()
        assert msg.status == 'read'
        assert push('failed') == 1
        msg.refresh_from_db()
        assert msg.status == 'failed'


@pytest.mark.django_db
class TestWhatsAppEndpoint:
    @override_settings(WHATSAPP_VERIFY_TOKEN='verify-me')
    def test_handshake(self, api):
        client = api()
        params = {'hub.mode': 'subscribe', 'hub.verify_token': 'verify-me', 'hub.challenge': '12345'}
        response = client.get(WHATSAPP_URL, params)
        assert response.status_code == 200
        assert response.content == b'12345'
        response = client.get(WHATSAPP_URL, dict(params, **{'hub.verify_token': 'wrong'}))
        assert response.status_code == 403

    def test_handshake_fails_without_configured_token(self, api):
        params = {'hub.mode': 'subscribe', 'hub.verify_token': '', 'hub.challenge': '1'}
        assert api().get(WHATSAPP_URL, params).status_code == 403

    def test_unsigned_post_accepted_without_secret(self, api, center):
        response = api().post(WHATSAPP_URL, json.dumps(inbound()), content_type='application/json')
        assert response.status_code == 200
        assert response.data['data']['messages'] == 1
        event = WebhookEvent.objects.get()
        assert event.provider == 'whatsapp'
        assert event.signature_valid is False

    @override_settings(WHATSAPP_APP_SECRET=SECRET)
    def test_signed_post(self, api, center):
        body = json.dumps(inbound()).encode()
        client = api()
        bad = client.post(WHATSAPP_URL, body, content_type='application/json',
                          HTTP_X_HUB_SIGNATURE_256='sha256=' + sign('nope', body))
        assert bad.status_code == 403
        assert bad.data['code'] == 'invalid_signature'
        assert not WhatsAppMessage.objects.exists()

        good = client.post(WHATSAPP_URL, body, content_type='application/json',
                           HTTP_X_HUB_SIGNATURE_256='sha256=' + sign(SECRET, body))
        assert good.status_code == 200
        assert WebhookEvent.objects.get().signature_valid is True

    def test_non_json_body(self, api):
        response = api().post(WHATSAPP_URL, 'not json', content_type='application/json')
        assert response.status_code == 400
        assert response.data['code'] == 'invalid_payload'


@pytest.mark.django_db
class TestSlackEndpoint:
    def slack_post(self, client, payload, secret=SECRET, ts=None):
        body = json.dumps(payload).encode()
        ts = ts or str(int(time.time()))
        signature = 'v0=' + sign(secret, b'v0:' + ts.encode() + b':' + body)
        return client.post(SLACK_URL, body, content_type='application/json',
                           HTTP_X_SLACK_REQUEST_TIMESTAMP=ts, HTTP_X_SLACK_SIGNATURE=signature)

    def test_not_configured(self, api):
        response = self.slack_post(api(), {'type': 'event_callback'})
        assert response.status_code == 503
        assert response.data['code'] == 'not_configured'

    @override_settings(SLACK_SIGNING_SECRET=SECRET)
    def test_url_verification(self, api):
        response = self.slack_post(api(), {'type': 'url_verification', 'challenge': 'abc'})
        assert response.status_code == 200
        assert response.content == b'abc'

    @override_settings(SLACK_SIGNING_SECRET=SECRET)
    def test_event_is_recorded(self, api):
        response = self.slack_post(api(), {'type': 'event_callback', 'event': {'type': 'app_mention'}})
        assert response.status_code == 200
        assert response.data['data'] == {'received': True}
        assert WebhookEvent.objects.get().event_type == 'app_mention'

    @override_settings(SLACK_SIGNING_SECRET=SECRET)
    def test_bad_signature(self, api):
        response = self.slack_post(api(), {'type': 'event_callback'}, secret='wrong')
        assert response.status_code == 403
        stale = self.slack_post(api(), {'type': 'event_callback'}, ts=str(int(time.time()) - 3600))
        assert stale.status_code == 403
        assert not WebhookEvent.objects.exists()
