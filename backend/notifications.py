"""
Notification service for WatchDucker
Sends update reports to the channels configured in push.yaml

push.yaml layout:

    setting:
      push_server: telegram,bark      # comma-separated channel names
    telegram:
      bot_token: ...
      chat_id: ...
    bark:
      api_url: https://api.day.app
      token: ...

Each channel reads only its own section. A channel that fails to send is
logged and never stops the others.
"""

import base64
import hashlib
import hmac
import logging
import os
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.mime.text import MIMEText
from typing import Callable, Dict, List, Optional, Any, Type
from urllib.parse import quote, quote_plus

import aiosmtplib
import httpx
import yaml

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 30.0

NOTIFIER_REGISTRY: Dict[str, Type['Notifier']] = {}


class NotificationError(Exception):
    """A notification channel could not be configured or could not deliver."""


def register_notifier(name: str) -> Callable[[Type['Notifier']], Type['Notifier']]:
    """Class decorator adding a Notifier implementation to NOTIFIER_REGISTRY under name."""
    def decorator(cls: Type['Notifier']) -> Type['Notifier']:
        cls.name = name
        NOTIFIER_REGISTRY[name] = cls
        return cls
    return decorator


class Notifier(ABC):
    """
    One notification channel.

    Subclasses list the settings they cannot work without in
    `required_fields`; a missing one raises NotificationError at construction.
    """

    name = ''
    required_fields: tuple = ()

    def __init__(self, settings: Optional[Dict[str, Any]], http_client: httpx.AsyncClient):
        self.settings = settings or {}
        self.http_client = http_client
        missing = [key for key in self.required_fields if not self.settings.get(key)]
        if missing:
            raise NotificationError(f"{self.name} config missing {', '.join(missing)}")

    def setting(self, key: str, default: Any = '') -> Any:
        value = self.settings.get(key)
        if value is None or value == '':
            return default
        return value.strip() if isinstance(value, str) else value

    @abstractmethod
    async def send(self, title: str, message: str) -> None:
        """Deliver one notification. Raises NotificationError on failure."""

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.http_client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(f"{self.name} HTTP error {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise NotificationError(f"{self.name} connection error: {e}") from e
        logger.debug(f"{self.name} response {response.status_code}: {response.text[:200]}")
        return response

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        return await self._request('POST', url, json=payload)

    async def _post_form(self, url: str, data: Dict[str, Any]) -> httpx.Response:
        return await self._request('POST', url, data=data)

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return await self._request('GET', url, params=params)


@register_notifier('telegram')
class TelegramNotifier(Notifier):
    required_fields = ('bot_token', 'chat_id')

    async def send(self, title: str, message: str) -> None:
        api_host = self.setting('api_url', 'api.telegram.org')
        api_host = api_host.replace('https://', '').replace('http://', '').rstrip('/')
        url = f"https://{api_host}/bot{self.setting('bot_token')}/sendMessage"
        await self._post_form(url, {'chat_id': self.setting('chat_id'), 'text': f"{title}\n{message}"})


@register_notifier('ftqq')
class ServerChanNotifier(Notifier):
    required_fields = ('push_token',)

    async def send(self, title: str, message: str) -> None:
        url = f"https://sctapi.ftqq.com/{self.setting('push_token')}.send"
        await self._post_form(url, {'title': title, 'desp': message})


@register_notifier('pushplus')
class PushPlusNotifier(Notifier):
    required_fields = ('push_token',)

    async def send(self, title: str, message: str) -> None:
        await self._post_json(
            'https://www.pushplus.plus/send',
            {'token': self.setting('push_token'), 'title': title, 'content': message}
        )


@register_notifier('cqhttp')
class CqhttpNotifier(Notifier):
    required_fields = ('cqhttp_url', 'cqhttp_qq')

    async def send(self, title: str, message: str) -> None:
        await self._post_json(
            self.setting('cqhttp_url'),
            {'user_id': int(self.setting('cqhttp_qq')), 'message': f"{title}\n{message}"}
        )


@register_notifier('smtp')
class SmtpNotifier(Notifier):
    """Send notification via SMTP (Email)"""

    required_fields = ('mailhost', 'fromaddr', 'toaddr')

    async def send(self, title: str, message: str) -> None:
        host = self.setting('mailhost')
        try:
            port = int(self.setting('port', 587))
        except (ValueError, TypeError):
            raise NotificationError(f"Invalid SMTP port: {self.settings.get('port')}")

        msg = MIMEText(message, 'plain', 'utf-8')
        msg['Subject'] = title
        msg['From'] = self.setting('fromaddr')
        msg['To'] = self.setting('toaddr')

        # Port 465 uses direct TLS, everything else STARTTLS when offered
        smtp_kwargs = {'hostname': host, 'port': port, 'timeout': HTTP_TIMEOUT}
        if port == 465:
            smtp_kwargs['use_tls'] = True
        else:
            smtp_kwargs['start_tls'] = None

        try:
            async with aiosmtplib.SMTP(**smtp_kwargs) as smtp:
                if self.setting('username'):
                    await smtp.login(self.setting('username'), self.setting('password'))
                await smtp.send_message(msg)
        except aiosmtplib.SMTPAuthenticationError as e:
            raise NotificationError(f"SMTP authentication failed: {e}") from e
        except aiosmtplib.SMTPException as e:
            raise NotificationError(f"SMTP error: {e}") from e


@register_notifier('wecom')
class WecomNotifier(Notifier):
    required_fields = ('wechat_id', 'secret', 'agentid')

    async def send(self, title: str, message: str) -> None:
        token_response = await self._get(
            'https://qyapi.weixin.qq.com/cgi-bin/gettoken',
            params={'corpid': self.setting('wechat_id'), 'corpsecret': self.setting('secret')}
        )
        access_token = token_response.json().get('access_token')
        if not access_token:
            raise NotificationError(f"wecom token request rejected: {token_response.text[:200]}")

        await self._post_json(
            f"https://qyapi.weixin.qq.com/cgi-bin/message/send?access_token={access_token}",
            {
                'agentid': self.setting('agentid'),
                'msgtype': 'text',
                'touser': self.setting('touser', '@all'),
                'text': {'content': f"{title}\n{message}"},
            }
        )


@register_notifier('wecomrobot')
class WecomRobotNotifier(Notifier):
    required_fields = ('url',)

    async def send(self, title: str, message: str) -> None:
        text = {'content': f"{title}\n{message}"}
        if self.setting('mobile'):
            text['mentioned_mobile_list'] = [str(self.setting('mobile'))]
        await self._post_json(self.setting('url'), {'msgtype': 'text', 'text': text})


@register_notifier('pushdeer')
class PushDeerNotifier(Notifier):
    required_fields = ('token',)

    async def send(self, title: str, message: str) -> None:
        api_url = self.setting('api_url', 'https://api2.pushdeer.com').rstrip('/')
        await self._get(
            f"{api_url}/message/push",
            params={'pushkey': self.setting('token'), 'text': title, 'desp': message, 'type': 'markdown'}
        )


def dingtalk_sign(secret: str, timestamp_ms: str) -> str:
    """URL-encoded HMAC-SHA256 signature for DingTalk robot webhooks."""
    string_to_sign = f"{timestamp_ms}\n{secret}"
    digest = hmac.new(secret.encode('utf-8'), string_to_sign.encode('utf-8'), hashlib.sha256).digest()
    return quote_plus(base64.b64encode(digest).decode('utf-8'))


@register_notifier('dingrobot')
class DingTalkNotifier(Notifier):
    required_fields = ('webhook',)

    async def send(self, title: str, message: str) -> None:
        url = self.setting('webhook')
        secret = self.setting('secret')
        if secret:
            timestamp = str(int(time.time() * 1000))
            url = f"{url}&timestamp={timestamp}&sign={dingtalk_sign(secret, timestamp)}"
        await self._post_json(url, {'msgtype': 'text', 'text': {'content': f"{title}\n{message}"}})


@register_notifier('feishubot')
class FeishuNotifier(Notifier):
    required_fields = ('webhook',)

    async def send(self, title: str, message: str) -> None:
        await self._post_json(
            self.setting('webhook'),
            {'msg_type': 'text', 'content': {'text': f"{title}\n{message}"}}
        )


@register_notifier('bark')
class BarkNotifier(Notifier):
    required_fields = ('token',)

    async def send(self, title: str, message: str) -> None:
        api_url = self.setting('api_url', 'https://api.day.app').rstrip('/')
        url = f"{api_url}/{self.setting('token')}/{quote(title, safe='')}/{quote(message, safe='')}"
        await self._get(url)


@register_notifier('gotify')
class GotifyNotifier(Notifier):
    """Send notification via Gotify"""

    required_fields = ('api_url', 'token')

    async def send(self, title: str, message: str) -> None:
        server_url = self.setting('api_url')
        if not server_url.startswith(('http://', 'https://')):
            raise NotificationError(f"Gotify api_url must start with http:// or https://: {server_url}")

        try:
            priority = int(self.setting('priority', 5))
        except (ValueError, TypeError):
            priority = 5

        await self._post_json(
            f"{server_url.rstrip('/')}/message?token={self.setting('token')}",
            {'title': title, 'message': message, 'priority': priority}
        )


@register_notifier('ifttt')
class IftttNotifier(Notifier):
    required_fields = ('event', 'key')

    async def send(self, title: str, message: str) -> None:
        url = f"https://maker.ifttt.com/trigger/{self.setting('event')}/with/key/{self.setting('key')}"
        await self._post_json(url, {'value1': title, 'value2': message})


@register_notifier('webhook')
class WebhookNotifier(Notifier):
    required_fields = ('webhook_url',)

    async def send(self, title: str, message: str) -> None:
        await self._post_json(self.setting('webhook_url'), {'title': title, 'message': message})


@register_notifier('qmsg')
class QmsgNotifier(Notifier):
    required_fields = ('key',)

    async def send(self, title: str, message: str) -> None:
        await self._post_form(f"https://qmsg.zendee.cn/send/{self.setting('key')}", {'msg': f"{title}\n{message}"})


@register_notifier('discord')
class DiscordNotifier(Notifier):
    """Send notification via Discord webhook"""

    required_fields = ('webhook',)
    EMBED_COLOR = 1926125

    async def send(self, title: str, message: str) -> None:
        payload = {
            'username': 'WatchDucker',
            'embeds': [{
                'title': title,
                'description': message,
                'color': self.EMBED_COLOR,
                'timestamp': datetime.now(timezone.utc).isoformat(),
            }],
        }
        if self.setting('verify_ssl', True) is False:
            # TLS verification is fixed per client, so an unverified webhook needs its own
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, verify=False) as client:
                unverified = DiscordNotifier(self.settings, client)
                await unverified._post_json(self.setting('webhook'), payload)
            return
        await self._post_json(self.setting('webhook'), payload)


def load_push_config(path: str) -> Optional[Dict[str, Any]]:
    """
    Read push.yaml.

    Returns:
        Parsed mapping, or None when the file does not exist

    Raises:
        NotificationError: If the file is not valid YAML or not a mapping
    """
    if not path or not os.path.exists(path):
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise NotificationError(f"Failed to read notification config {path}: {e}") from e
    if not isinstance(data, dict):
        raise NotificationError(f"Notification config {path} must be a mapping")
    return data


def build_notifiers(push_config: Dict[str, Any], http_client: httpx.AsyncClient) -> List[Notifier]:
    """Instantiate the channels named in setting.push_server, skipping unknown or misconfigured ones."""
    servers = str((push_config.get('setting') or {}).get('push_server') or '')
    notifiers = []
    for name in (s.strip().lower() for s in servers.split(',')):
        if not name:
            continue
        notifier_cls = NOTIFIER_REGISTRY.get(name)
        if notifier_cls is None:
            logger.warning(f"Unknown notification channel: {name}")
            continue
        try:
            notifiers.append(notifier_cls(push_config.get(name), http_client))
        except NotificationError as e:
            logger.error(f"Skipping notification channel {name}: {e}")
    return notifiers


def load_notifiers(path: str, http_client: httpx.AsyncClient) -> List[Notifier]:
    """Notifiers configured in the push.yaml at path. Missing file means none."""
    push_config = load_push_config(path)
    if push_config is None:
        logger.info(f"No notification config at {path}, notifications disabled")
        return []
    notifiers = build_notifiers(push_config, http_client)
    if not notifiers:
        logger.info("No notification channels configured")
    return notifiers


class NotificationDispatcher:
    """Fans one message out to every configured notifier."""

    def __init__(self, notifiers: Optional[List[Notifier]] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.http_client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.notifiers = notifiers or []

    @classmethod
    def from_file(cls, path: str) -> 'NotificationDispatcher':
        http_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        try:
            notifiers = load_notifiers(path, http_client)
        except NotificationError as e:
            logger.error(f"Notifications disabled: {e}")
            notifiers = []
        return cls(notifiers, http_client)

    @property
    def enabled(self) -> bool:
        return bool(self.notifiers)

    async def send(self, title: str, message: str) -> int:
        """
        Send to every notifier.

        Returns:
            Number of channels that delivered successfully
        """
        delivered = 0
        for notifier in self.notifiers:
            try:
                await notifier.send(title, message)
            except NotificationError as e:
                logger.error(f"Failed to send {notifier.name} notification: {e}")
                continue
            except Exception as e:
                logger.error(f"Unexpected error sending {notifier.name} notification: {e}", exc_info=True)
                continue
            delivered += 1
            logger.info(f"{notifier.name} notification sent successfully")
        return delivered

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()

    async def __aenter__(self):
        """Context manager entry"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure cleanup"""
        await self.close()
        return False
