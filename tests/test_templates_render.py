import unittest
from unittest.mock import MagicMock
from fastapi.templating import Jinja2Templates
from fastapi import Request

class TestTemplatesRender(unittest.TestCase):
    def setUp(self):
        self.templates = Jinja2Templates(directory="templates")
        self.request = MagicMock(spec=Request)

    def test_auth_callback_render(self):
        response = self.templates.TemplateResponse(
            self.request, "auth_callback.html", {"code": "4/0AbCdEf"}
        )
        self.assertIn(b"4/0AbCdEf", response.body)
        self.assertIn(b'id="auth-code"', response.body)
        self.assertIn(b"Authorization Successful", response.body)
