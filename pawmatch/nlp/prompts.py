"""
Prompt模板管理
"""
from pathlib import Path
from typing import Dict

from langchain_core.prompts import ChatPromptTemplate

from pawmatch.logs import setup_logger
from pawmatch.nlp.exceptions import PromptError

logger = setup_logger(__name__)


class PromptManager:
    """Prompt模板管理器（LangChain ChatPromptTemplate）"""
    
    def __init__(self, prompts_dir: Path = None):
        self.prompts_dir = prompts_dir or Path(__file__).parent / "prompts"
        self._prompts: Dict[str, ChatPromptTemplate] = {}
        self._load_prompts()
    
    def _load_prompts(self):
        """加载所有prompt模板为ChatPromptTemplate对象"""
        for file_path in sorted(self.prompts_dir.glob("*.txt")):
            name = file_path.stem  # 文件名（不含扩展名）
            try:
                template_text = file_path.read_text(encoding="utf-8")
                self._prompts[name] = ChatPromptTemplate.from_template(template_text)
                logger.debug(f"加载Prompt模板: {name}")
            except Exception as e:
                logger.error(f"加载模板文件 {file_path} 失败: {e}")
    
    def get_prompt(self, name: str) -> ChatPromptTemplate:
        """
        获取prompt模板（ChatPromptTemplate对象）
        
        Args:
            name: prompt名称（文件名，不含扩展名）
        
        Returns:
            ChatPromptTemplate对象
        
        Raises:
            PromptError: 模板不存在时抛出
        """
        template = self._prompts.get(name)
        if not template:
            raise PromptError(f"Prompt模板 '{name}' 不存在")
        return template
    
    def render(self, template_name: str, /, **variables) -> str:
        """
        渲染模板为纯文本
        
        Args:
            template_name: prompt名称（仅限位置参数，模板变量可以叫 name）
            **variables: 模板变量
        
        Returns:
            渲染后的文本（去首尾空白）
        
        Raises:
            PromptError: 模板不存在或缺少变量
        """
        template = self.get_prompt(template_name)
        try:
            messages = template.format_messages(**variables)
        except KeyError as e:
            raise PromptError(f"Prompt模板 '{template_name}' 缺少变量: {e}", cause=e) from e
        return messages[0].content.strip()


# 全局prompt管理器
prompt_manager = PromptManager()
