from chatrelay.tools.base import Tool, ToolContext, ToolKind

PLACEHOLDER = (
    "Code execution is not available: no sandboxed interpreter is configured "
    "on this server, so the code was not run."
)


class CodeInterpreterTool(Tool):
    @property
    def kind(self) -> ToolKind:
        return ToolKind.CODE_INTERPRETER

    @property
    def description(self) -> str:
        return "Execute Python code and return the result"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "code": {"type": "string", "description": "The Python code to execute"},
            },
            "required": ["code"],
        }

    async def execute(self, args: dict, ctx: ToolContext) -> str:
        return PLACEHOLDER
