"""
后台管理系统共享核心
提供身份认证、访问控制、菜单与权限树、API密钥管理等功能
"""

__version__ = "1.0.0"
