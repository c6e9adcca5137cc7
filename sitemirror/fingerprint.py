"""
SiteMirror - Browser Fingerprint and Challenge Handling

Describes the TLS ClientHello and HTTP/2 SETTINGS shape of a desktop
Chrome 122 build, and detects/solves the arithmetic interstitial some
bot-defense front ends return instead of the requested page.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode, urlparse

from .errors import ExpressionError


logger = logging.getLogger(__name__)


# Substrings of target URLs known to sit behind bot defenses
PROTECTED_PATTERNS = (
    'cloudflare',
    'cf-',
    'upwork.com',
    'fiverr.com',
    'discord.com',
    'medium.com',
)

# Markers of an interstitial verification page
CHALLENGE_MARKERS = (
    'cf-browser-verification',
    'Checking your browser',
    'checking_browser',
    'cf-challenge',
    'jschl-answer',
)

# Minimum delay the interstitial enforces before accepting an answer
CHALLENGE_DELAY = 4.0

CHALLENGE_SUBMIT_PATH = '/cdn-cgi/l/chk_jschl'

VC_REGEX = re.compile(r'name="jschl_vc" value="([^"]+)"')
PASS_REGEX = re.compile(r'name="pass" value="([^"]+)"')
REDIRECT_REGEX = re.compile(r'name="r" value="([^"]+)"')
SCRIPT_REGEX = re.compile(r'setTimeout\(function\(\)\{([\s\S]+?)\}, 4000\)')
ANSWER_REGEX = re.compile(r'a\.value\s*=\s*([\d.+\-*/()\s]+)')


@dataclass(frozen=True)
class HandshakeProfile:
    """
    Fixed TLS + HTTP/2 negotiation shape.

    Order matters in every list: fingerprinting systems hash the order in
    which ciphers, extensions and settings appear, not just the sets.
    """
    tls_version: int
    tls_min_version: str
    tls_max_version: str
    cipher_suites: Tuple[int, ...]
    extensions: Tuple[int, ...]
    curves: Tuple[int, ...]
    point_formats: Tuple[int, ...]
    signature_algorithms: Tuple[str, ...]
    # (SETTINGS id, value) in the order sent
    http2_settings: Tuple[Tuple[int, int], ...]
    http2_window_update: int
    http2_pseudo_header_order: Tuple[str, ...]
    http2_stream_weight: int = 256
    http2_stream_exclusive: bool = False
    alpn: Tuple[str, ...] = ('h2', 'http/1.1')

    @property
    def ja3(self) -> str:
        """JA3 string: version,ciphers,extensions,curves,point formats."""
        return ','.join([
            str(self.tls_version),
            '-'.join(str(c) for c in self.cipher_suites),
            '-'.join(str(e) for e in self.extensions),
            '-'.join(str(c) for c in self.curves),
            '-'.join(str(p) for p in self.point_formats),
        ])

    @property
    def akamai(self) -> str:
        """Akamai HTTP/2 fingerprint: settings|window update|priority|pseudo-header order."""
        settings = ';'.join(f"{key}:{value}" for key, value in self.http2_settings)
        order = ','.join(name[1] for name in self.http2_pseudo_header_order)
        return f"{settings}|{self.http2_window_update}|0|{order}"

    @property
    def extra_fp(self) -> Dict[str, object]:
        return {
            'tls_signature_algorithms': list(self.signature_algorithms),
            'http2_stream_weight': self.http2_stream_weight,
            'http2_stream_exclusive': int(self.http2_stream_exclusive),
        }

    @property
    def http2_settings_map(self) -> Dict[int, int]:
        return dict(self.http2_settings)


# HTTP/2 SETTINGS identifiers (RFC 9113 section 6.5.2)
SETTINGS_HEADER_TABLE_SIZE = 0x1
SETTINGS_MAX_CONCURRENT_STREAMS = 0x3
SETTINGS_INITIAL_WINDOW_SIZE = 0x4
SETTINGS_MAX_FRAME_SIZE = 0x5
SETTINGS_MAX_HEADER_LIST_SIZE = 0x6


def build_handshake_profile() -> HandshakeProfile:
    """Return the Chrome 122 / Windows negotiation profile."""
    return HandshakeProfile(
        tls_version=771,
        tls_min_version='TLSv1.2',
        tls_max_version='TLSv1.3',
        cipher_suites=(
            0x1301,  # TLS_AES_128_GCM_SHA256
            0x1302,  # TLS_AES_256_GCM_SHA384
            0x1303,  # TLS_CHACHA20_POLY1305_SHA256
            0xc02b,  # ECDHE_ECDSA_WITH_AES_128_GCM_SHA256
            0xc02f,  # ECDHE_RSA_WITH_AES_128_GCM_SHA256
            0xc02c,  # ECDHE_ECDSA_WITH_AES_256_GCM_SHA384
            0xc030,  # ECDHE_RSA_WITH_AES_256_GCM_SHA384
            0xcca9,  # ECDHE_ECDSA_WITH_CHACHA20_POLY1305_SHA256
            0xcca8,  # ECDHE_RSA_WITH_CHACHA20_POLY1305_SHA256
            0xc013,  # ECDHE_RSA_WITH_AES_128_CBC_SHA
            0xc014,  # ECDHE_RSA_WITH_AES_256_CBC_SHA
        ),
        extensions=(
            0,      # server_name
            17,     # status_request (legacy id)
            43,     # supported_versions
            51,     # key_share
            13,     # signature_algorithms
            10,     # supported_groups
            16,     # application_layer_protocol_negotiation
            5,      # status_request
            18,     # signed_certificate_timestamp
            23,     # extended_master_secret
            27,     # compress_certificate
            35,     # session_ticket
            45,     # psk_key_exchange_modes
            65281,  # renegotiation_info
        ),
        curves=(
            0x001d,  # X25519
            0x0017,  # secp256r1
            0x0018,  # secp384r1
        ),
        point_formats=(0,),
        signature_algorithms=(
            'ecdsa_secp256r1_sha256',
            'ecdsa_secp384r1_sha384',
            'ecdsa_secp521r1_sha512',
            'rsa_pss_rsae_sha256',
            'rsa_pss_rsae_sha384',
            'rsa_pss_rsae_sha512',
            'rsa_pkcs1_sha256',
            'rsa_pkcs1_sha384',
            'rsa_pkcs1_sha512',
        ),
        http2_settings=(
            (SETTINGS_HEADER_TABLE_SIZE, 65536),
            (SETTINGS_MAX_CONCURRENT_STREAMS, 1000),
            (SETTINGS_INITIAL_WINDOW_SIZE, 6291456),
            (SETTINGS_MAX_FRAME_SIZE, 16777215),
            (SETTINGS_MAX_HEADER_LIST_SIZE, 262144),
        ),
        http2_window_update=15663105,
        http2_pseudo_header_order=(':method', ':authority', ':scheme', ':path'),
    )


def is_likely_protected(url: str) -> bool:
    """Cheap pre-check deciding whether the fingerprinted strategy is tried."""
    url = url.lower()
    return any(pattern in url for pattern in PROTECTED_PATTERNS)


def is_challenge_page(body: str) -> bool:
    if not body:
        return False
    if any(marker in body for marker in CHALLENGE_MARKERS):
        return True
    return 'Cloudflare' in body and 'Ray ID' in body


class ArithmeticEvaluator:
    """
    Recursive-descent evaluator for ``+ - * / ( )`` over decimal numbers.

    Grammar::

        expr   := term (('+' | '-') term)*
        term   := factor (('*' | '/') factor)*
        factor := ('+' | '-') factor | NUMBER | '(' expr ')'

    Anything else raises :class:`ExpressionError`; nothing is executed.
    """

    TOKEN_REGEX = re.compile(r'\s*(?:(\d+\.?\d*|\.\d+)|(.))')

    def __init__(self, source: str):
        self.tokens = self._tokenize(source)
        self.pos = 0

    @classmethod
    def evaluate(cls, source: str) -> float:
        parser = cls(source)
        if not parser.tokens:
            raise ExpressionError("empty expression")
        value = parser._expr()
        if parser.pos != len(parser.tokens):
            raise ExpressionError(f"unexpected token {parser.tokens[parser.pos]!r}")
        return value

    def _tokenize(self, source: str) -> List[str]:
        tokens = []
        for number, op in self.TOKEN_REGEX.findall(source.strip()):
            if number:
                tokens.append(number)
            elif op in '+-*/()':
                tokens.append(op)
            elif op.strip():
                raise ExpressionError(f"unsupported character {op!r}")
        return tokens

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise ExpressionError("unexpected end of expression")
        self.pos += 1
        return token

    def _expr(self) -> float:
        value = self._term()
        while self._peek() in ('+', '-'):
            if self._next() == '+':
                value += self._term()
            else:
                value -= self._term()
        return value

    def _term(self) -> float:
        value = self._factor()
        while self._peek() in ('*', '/'):
            op = self._next()
            rhs = self._factor()
            if op == '*':
                value *= rhs
            elif rhs == 0:
                raise ExpressionError("division by zero")
            else:
                value /= rhs
        return value

    def _factor(self) -> float:
        token = self._next()
        if token == '+':
            return self._factor()
        if token == '-':
            return -self._factor()
        if token == '(':
            value = self._expr()
            if self._next() != ')':
                raise ExpressionError("expected ')'")
            return value
        if token in '*/)':
            raise ExpressionError(f"unexpected token {token!r}")
        return float(token)


def compute_answer(expression: str, hostname: str) -> str:
    """
    Evaluate the challenge arithmetic and add the host name length.

    Returns:
        The answer as a 10-place decimal string

    Raises:
        ExpressionError: if the expression is not plain arithmetic
    """
    answer = ArithmeticEvaluator.evaluate(expression) + len(hostname)
    return f"{answer:.10f}"


class FingerprintEngine:
    """Browser-mimicry profile plus interstitial challenge solver."""

    def __init__(self, profile: Optional[HandshakeProfile] = None,
                 delay: float = CHALLENGE_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self.profile = profile or build_handshake_profile()
        self.delay = delay
        self._sleep = sleep

    def is_likely_protected(self, url: str) -> bool:
        return is_likely_protected(url)

    def build_handshake_profile(self) -> HandshakeProfile:
        return self.profile

    def is_challenge_page(self, body: str) -> bool:
        return is_challenge_page(body)

    def solve_challenge(self, body: str, url: str) -> Optional[str]:
        """
        Compute the resubmission URL for an arithmetic interstitial.

        Blocks the calling thread for ``delay`` seconds before returning,
        as the interstitial rejects answers submitted any sooner.

        Args:
            body: Challenge page HTML
            url: URL that returned the challenge

        Returns:
            The URL to request next, or None when the page cannot be solved
        """
        if not self.is_challenge_page(body):
            return None

        logger.info("Challenge page detected for %s, attempting to solve", url)

        vc_match = VC_REGEX.search(body)
        pass_match = PASS_REGEX.search(body)
        if not vc_match or not pass_match:
            logger.info("Could not extract challenge parameters")
            return None
        redirect_match = REDIRECT_REGEX.search(body)

        script_match = SCRIPT_REGEX.search(body)
        answer_match = ANSWER_REGEX.search(script_match.group(1)) if script_match else None
        if not answer_match:
            logger.info("Could not extract challenge script")
            return None

        parsed = urlparse(url)
        try:
            answer = compute_answer(answer_match.group(1), parsed.hostname or '')
        except ExpressionError as e:
            logger.info("Challenge arithmetic rejected: %s", e)
            return None

        solution = {
            'jschl_vc': vc_match.group(1),
            'pass': pass_match.group(1),
            'r': redirect_match.group(1) if redirect_match else '',
            'jschl_answer': answer,
        }

        self._sleep(self.delay)

        return f"{parsed.scheme}://{parsed.netloc}{CHALLENGE_SUBMIT_PATH}?{urlencode(solution)}"
