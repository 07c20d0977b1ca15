"""
Tests for the health check endpoint and request id middleware.
"""
from unittest.mock import MagicMock, patch

import pytest
from django.core.cache import caches as real_caches
from django.urls import reverse
from rest_framework.test import APIClient


@pytest.mark.django_db
class TestHealthCheckView:
    """Test health check endpoint."""

    def test_health_check_success(self):
        response = APIClient().get(reverse('health-check'))

        assert response.status_code == 200
        assert response.data == {
            'status': 'healthy',
            'database': 'healthy',
            'cache': 'healthy',
            'throttle_store': 'healthy',
        }

    def test_health_check_no_auth_required(self):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')
        assert client.get(reverse('health-check')).status_code == 200

    def test_throttle_store_down(self, settings):
        broken = MagicMock()
        broken.set.side_effect = ConnectionError('redis down')

        def pick(alias):
            return broken if alias == 'throttle' else real_caches[alias]

        settings.RBAC_THROTTLE_CACHE = 'throttle'
        with patch('apps.core.views.caches') as caches:
            caches.__getitem__.side_effect = pick
            response = APIClient().get(reverse('health-check'))

        assert response.status_code == 503
        assert response.data['status'] == 'unhealthy'
        assert response.data['cache'] == 'healthy'
        assert response.data['throttle_store'] == 'unhealthy'
        assert response.data['errors'] == ['throttle_store: redis down']


@pytest.mark.django_db
class TestRequestIDMiddleware:

    def test_generated_request_id(self):
        response = APIClient().get(reverse('health-check'))
        assert len(response['X-Request-ID']) == 36

    def test_incoming_request_id_echoed(self):
        response = APIClient().get(reverse('health-check'), HTTP_X_REQUEST_ID='abc-123')
        assert response['X-Request-ID'] == 'abc-123'

    def test_request_id_in_error_body(self):
        response = APIClient().get('/v1/rbac/permissions', HTTP_X_REQUEST_ID='abc-123')
        assert response.status_code == 403
        assert response.data['request_id'] == 'abc-123'
