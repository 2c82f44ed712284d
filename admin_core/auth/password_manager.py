"""
密码管理器
提供密码哈希、验证和基本长度校验
"""

import bcrypt


class PasswordManager:
    """密码管理器（凭据校验）"""

    def __init__(self, rounds: int = 12, min_length: int = 6):
        """
        初始化密码管理器

        Args:
            rounds: bcrypt加密轮数，默认12轮
            min_length: 密码最小长度
        """
        self.rounds = rounds
        self.min_length = min_length

    def hash_password(self, password: str) -> str:
        """
        哈希密码

        Args:
            password: 明文密码

        Returns:
            哈希后的密码
        """
        if not password:
            raise ValueError("密码不能为空")

        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
        return hashed.decode('utf-8')

    def verify_password(self, password: str, hashed_password: str) -> bool:
        """
        验证密码

        Args:
            password: 明文密码
            hashed_password: 哈希后的密码

        Returns:
            密码是否匹配
        """
        if not password or not hashed_password:
            return False

        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed_password.encode('utf-8'))
        except (ValueError, TypeError):
            return False

    def validate_password(self, password: str) -> None:
        """校验密码长度，不符合时抛出ValueError"""
        if not password or len(password) < self.min_length:
            raise ValueError(f"密码至少{self.min_length}个字符")
