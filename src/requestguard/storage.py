#!/usr/bin/env python3
"""
Durable storage for the ban list and the attack log.

Two backends share one interface:
- FileBanStore: newline-delimited identities and newline-delimited JSON
  attack records in plain text files (default)
- RedisBanStore: a Redis set for bans and a Redis list for attack records,
  for deployments running several worker processes

Security Considerations:
- Identities round-trip exactly (no normalisation on save or load)
- Ban list writes replace the whole list atomically (temp file + rename,
  or a MULTI/EXEC pipeline), so a retried write cannot leave a partial list
- Write failures raise PersistenceFailure; callers on the request path
  dispatch writes in the background and only log the failure
- Load failures at startup are fatal
"""

import json
import logging
import os
import tempfile
import threading
from typing import Dict, Iterable, List, Set

import redis

from .exceptions import PersistenceFailure


DEFAULT_BAN_LIST_PATH = '.banned_ips.txt'
DEFAULT_ATTACK_LOG_PATH = '.security_attack_log.txt'


class BanStore:
    """Storage interface for bans and attack records."""

    def load_bans(self) -> Set[str]:
        raise NotImplementedError

    def save_bans(self, identities: Iterable[str]) -> None:
        raise NotImplementedError

    def append_attack(self, record: Dict) -> None:
        raise NotImplementedError

    def load_attacks(self) -> List[Dict]:
        raise NotImplementedError


class FileBanStore(BanStore):
    """
    Plain text file backend.

    Thread-safe: Yes (writes serialized by a lock)
    """

    def __init__(
        self,
        ban_list_path: str = DEFAULT_BAN_LIST_PATH,
        attack_log_path: str = DEFAULT_ATTACK_LOG_PATH,
    ):
        self.ban_list_path = ban_list_path
        self.attack_log_path = attack_log_path
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

    def load_bans(self) -> Set[str]:
        """
        Load banned identities.

        Returns:
            Set of identities, empty if the file does not exist

        Raises:
            PersistenceFailure: If the file exists but cannot be read
        """
        if not os.path.exists(self.ban_list_path):
            return set()

        try:
            with open(self.ban_list_path, 'r', encoding='utf-8', newline='\n') as f:
                identities = {line.rstrip('\n') for line in f if line.rstrip('\n')}
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceFailure(f"Failed to load ban list: {e}")

        self.logger.info(f"Loaded {len(identities)} banned identities from file")
        return identities

    def save_bans(self, identities: Iterable[str]) -> None:
        content = '\n'.join(sorted(identities))
        directory = os.path.dirname(os.path.abspath(self.ban_list_path))

        with self._lock:
            try:
                os.makedirs(directory, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.bans-')
                try:
                    with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as f:
                        f.write(content)
                    os.replace(tmp_path, self.ban_list_path)
                except BaseException:
                    if os.path.exists(tmp_path):
                        os.unlink(tmp_path)
                    raise
            except OSError as e:
                raise PersistenceFailure(f"Failed to save ban list: {e}")

    def append_attack(self, record: Dict) -> None:
        line = json.dumps(record, default=str, ensure_ascii=False)

        with self._lock:
            try:
                directory = os.path.dirname(os.path.abspath(self.attack_log_path))
                os.makedirs(directory, exist_ok=True)
                with open(self.attack_log_path, 'a', encoding='utf-8') as f:
                    f.write(line + '\n')
            except OSError as e:
                raise PersistenceFailure(f"Failed to save attack log: {e}")

    def load_attacks(self) -> List[Dict]:
        if not os.path.exists(self.attack_log_path):
            return []

        records = []
        try:
            with open(self.attack_log_path, 'r', encoding='utf-8') as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError:
                        self.logger.warning("Skipping malformed attack log line")
        except OSError as e:
            raise PersistenceFailure(f"Failed to load attack log: {e}")
        return records


class RedisBanStore(BanStore):
    """
    Redis backend.

    Thread-safe: Yes (redis-py clients are thread-safe)
    """

    def __init__(self, redis_client, key_prefix: str = 'requestguard'):
        """
        Initialize Redis store.

        Args:
            redis_client: Connected Redis client
            key_prefix: Namespace for the ban set and attack list

        Raises:
            ValueError: If redis_client is None
            PersistenceFailure: If Redis is unavailable
        """
        if redis_client is None:
            raise ValueError("Redis client is required")

        self.redis = redis_client
        self.ban_key = f"{key_prefix}:banned"
        self.attack_key = f"{key_prefix}:attacks"
        self.logger = logging.getLogger(__name__)

        try:
            self.redis.ping()
        except Exception as e:
            raise PersistenceFailure(f"Redis connection failed: {e}")

    def load_bans(self) -> Set[str]:
        try:
            members = self.redis.smembers(self.ban_key) or set()
        except Exception as e:
            raise PersistenceFailure(f"Failed to load ban list from Redis: {e}")

        identities = {
            member.decode('utf-8') if isinstance(member, bytes) else member
            for member in members
        }
        self.logger.info(f"Loaded {len(identities)} banned identities from Redis")
        return identities

    def save_bans(self, identities: Iterable[str]) -> None:
        identities = list(identities)
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.delete(self.ban_key)
            if identities:
                pipe.sadd(self.ban_key, *identities)
            pipe.execute()
        except Exception as e:
            raise PersistenceFailure(f"Failed to save ban list to Redis: {e}")

    def append_attack(self, record: Dict) -> None:
        try:
            self.redis.rpush(self.attack_key, json.dumps(record, default=str))
        except Exception as e:
            raise PersistenceFailure(f"Failed to save attack record to Redis: {e}")

    def load_attacks(self) -> List[Dict]:
        try:
            raw = self.redis.lrange(self.attack_key, 0, -1) or []
        except Exception as e:
            raise PersistenceFailure(f"Failed to load attack log from Redis: {e}")
        return [json.loads(item) for item in raw]


def create_ban_store(config: Dict) -> BanStore:
    """
    Create the configured storage backend.

    Raises:
        PersistenceFailure: If the Redis backend cannot connect
        ValueError: If the backend name is unknown
    """
    storage_config = config.get('storage', {}) or {}
    backend = str(storage_config.get('backend', 'file')).lower()

    if backend == 'file':
        return FileBanStore(
            ban_list_path=storage_config.get('ban_list_path', DEFAULT_BAN_LIST_PATH),
            attack_log_path=storage_config.get('attack_log_path', DEFAULT_ATTACK_LOG_PATH),
        )

    if backend == 'redis':
        redis_config = storage_config.get('redis', {}) or {}
        client = redis.Redis(
            host=redis_config.get('host', 'localhost'),
            port=int(redis_config.get('port', 6379)),
            db=int(redis_config.get('db', 0)),
            password=redis_config.get('password') or None,
            socket_timeout=redis_config.get('timeout', 5),
            socket_connect_timeout=redis_config.get('timeout', 5),
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return RedisBanStore(client, key_prefix=redis_config.get('key_prefix', 'requestguard'))

    raise ValueError(f"Unknown storage backend: {backend}")
