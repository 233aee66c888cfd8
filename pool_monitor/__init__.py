"""
Pool Monitor - 矿池存储承诺监控后端

负责：
- 每 30 分钟对账一次：本地承诺（initial_post）↔ 链上 PoET 注册 / ATX 激活
- 将命中的记录幂等写入本地缓存库
- 提供总览与单节点 REST API 给前端
"""

__version__ = "1.0.0"
