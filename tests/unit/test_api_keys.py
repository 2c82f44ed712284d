"""
API密钥管理测试
"""

import pytest
from unittest.mock import patch

from admin_core.auth import ConflictError, NotFoundError, InvalidCredentialsError
from admin_core.auth.api_keys import ApiKeyManager, hash_secret


@pytest.mark.asyncio
class TestApiKeyManager:

    async def test_generate_returns_secret_once(self, api_key_manager, role_manager, fake_db):
        role = await role_manager.create_role("集成", "INTEGRATION")

        result = await api_key_manager.generate_api_key(role.id, remark="ci")

        assert set(result) == {'key', 'secret'}
        stored = fake_db.roles.documents[0]['api_keys'][0]
        assert stored['key'] == result['key']
        assert stored['secret_hash'] == hash_secret(result['secret'])
        assert result['secret'] not in str(fake_db.roles.documents)

        listed = await api_key_manager.list_api_keys(role.id)
        assert listed[0]['key'] == result['key']
        assert listed[0]['remark'] == "ci"
        assert 'secret_hash' not in listed[0]
        assert 'secret' not in listed[0]

    async def test_keys_unique_across_roles(self, api_key_manager, role_manager):
        first = await role_manager.create_role("集成A", "A")
        second = await role_manager.create_role("集成B", "B")

        keys = set()
        for _ in range(20):
            keys.add((await api_key_manager.generate_api_key(first.id))['key'])
            keys.add((await api_key_manager.generate_api_key(second.id))['key'])

        assert len(keys) == 40

    async def test_collision_regenerates(self, api_key_manager, role_manager):
        role = await role_manager.create_role("集成", "INTEGRATION")
        existing = (await api_key_manager.generate_api_key(role.id))['key']

        with patch('admin_core.auth.api_keys.secrets.token_hex', side_effect=[existing, "fresh-key"]):
            result = await api_key_manager.generate_api_key(role.id)

        assert result['key'] == "fresh-key"

    async def test_collision_retry_limit(self, fake_db, role_manager):
        manager = ApiKeyManager(fake_db, max_attempts=3)
        role = await role_manager.create_role("集成", "INTEGRATION")
        existing = (await manager.generate_api_key(role.id))['key']

        with patch('admin_core.auth.api_keys.secrets.token_hex', return_value=existing):
            with pytest.raises(ConflictError):
                await manager.generate_api_key(role.id)

    async def test_generate_for_missing_role(self, api_key_manager):
        with pytest.raises(NotFoundError):
            await api_key_manager.generate_api_key("64b7f0c2a1b2c3d4e5f60718")
        with pytest.raises(NotFoundError):
            await api_key_manager.generate_api_key("bad-id")

    async def test_toggle(self, api_key_manager, role_manager):
        role = await role_manager.create_role("集成", "INTEGRATION")
        result = await api_key_manager.generate_api_key(role.id)

        await api_key_manager.toggle_api_key(role.id, result['key'], False)
        assert (await api_key_manager.list_api_keys(role.id))[0]['is_active'] is False

        with pytest.raises(NotFoundError):
            await api_key_manager.toggle_api_key(role.id, "unknown", True)

    async def test_toggle_key_of_other_role(self, api_key_manager, role_manager):
        first = await role_manager.create_role("集成A", "A")
        second = await role_manager.create_role("集成B", "B")
        result = await api_key_manager.generate_api_key(first.id)

        with pytest.raises(NotFoundError):
            await api_key_manager.toggle_api_key(second.id, result['key'], False)

    async def test_revoke(self, api_key_manager, role_manager, fake_db):
        role = await role_manager.create_role("集成", "INTEGRATION")
        keep = await api_key_manager.generate_api_key(role.id)
        drop = await api_key_manager.generate_api_key(role.id)

        assert await api_key_manager.revoke_api_key(role.id, drop['key'])

        before = [dict(k) for k in fake_db.roles.documents[0]['api_keys']]
        assert not await api_key_manager.revoke_api_key(role.id, drop['key'])
        assert not await api_key_manager.revoke_api_key(role.id, "never-existed")
        assert fake_db.roles.documents[0]['api_keys'] == before
        assert [k['key'] for k in before] == [keep['key']]

    async def test_verify(self, api_key_manager, role_manager):
        role = await role_manager.create_role("集成", "INTEGRATION")
        result = await api_key_manager.generate_api_key(role.id)

        verified = await api_key_manager.verify_api_key(result['key'], result['secret'])

        assert verified.id == role.id
        assert verified.find_api_key(result['key']).last_used_at is not None

    async def test_verify_rejects_wrong_secret_and_inactive(self, api_key_manager, role_manager):
        role = await role_manager.create_role("集成", "INTEGRATION")
        result = await api_key_manager.generate_api_key(role.id)

        with pytest.raises(InvalidCredentialsError):
            await api_key_manager.verify_api_key(result['key'], "wrong")
        with pytest.raises(InvalidCredentialsError):
            await api_key_manager.verify_api_key("unknown", result['secret'])
        with pytest.raises(InvalidCredentialsError):
            await api_key_manager.verify_api_key(None, None)

        await api_key_manager.toggle_api_key(role.id, result['key'], False)
        with pytest.raises(InvalidCredentialsError):
            await api_key_manager.verify_api_key(result['key'], result['secret'])
