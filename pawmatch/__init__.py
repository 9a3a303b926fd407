"""
Pawmatch：宠物领养匹配服务（向量检索 + LLM重排 + 渐进式访谈）
"""
