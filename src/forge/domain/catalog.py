from __future__ import annotations

from typing import Dict, List

from .models import ModelSelector, TemplateSpec


TEMPLATES: Dict[str, TemplateSpec] = {
    "code-interpreter-v1": TemplateSpec(
        name="Python data analyst",
        lib=["python", "jupyter", "numpy", "pandas", "matplotlib", "seaborn", "plotly"],
        file="script.py",
        instructions="Runs code as a Jupyter notebook cell. Strong data analysis angle. Can use complex visualisation to explain results.",
        port=None,
    ),
    "nextjs-developer": TemplateSpec(
        name="Next.js developer",
        lib=["nextjs@14.2.5", "typescript", "@types/node", "@types/react", "@types/react-dom", "postcss", "tailwindcss", "shadcn"],
        file="pages/index.tsx",
        instructions="A Next.js 13+ app that reloads automatically. Using the pages router.",
        port=3000,
    ),
    "vue-developer": TemplateSpec(
        name="Vue.js developer",
        lib=["vue@latest", "nuxt@3.13.0", "tailwindcss"],
        file="app.vue",
        instructions="A Vue.js 3+ app that reloads automatically. Only when asked specifically for a Vue app.",
        port=3000,
    ),
    "streamlit-developer": TemplateSpec(
        name="Streamlit developer",
        lib=["streamlit", "pandas", "numpy", "matplotlib", "requests", "seaborn", "plotly"],
        file="app.py",
        instructions="A streamlit app that reloads automatically.",
        port=8501,
    ),
    "gradio-developer": TemplateSpec(
        name="Gradio developer",
        lib=["gradio", "pandas", "numpy", "matplotlib", "requests", "seaborn", "plotly"],
        file="app.py",
        instructions="A gradio app. Gradio Blocks/Interface should be called demo.",
        port=7860,
    ),
    "static-site-developer": TemplateSpec(
        name="Static website developer",
        lib=["html", "css", "javascript"],
        file="index.html",
        instructions="A static multi-section website served as plain HTML, CSS and JavaScript files.",
        port=80,
    ),
}


MODELS: List[ModelSelector] = [
    ModelSelector(id="claude-3-5-sonnet-latest", provider="Anthropic", provider_id="anthropic", name="Claude 3.5 Sonnet", multi_modal=True),
    ModelSelector(id="claude-3-5-haiku-latest", provider="Anthropic", provider_id="anthropic", name="Claude 3.5 Haiku", multi_modal=False),
    ModelSelector(id="gpt-4o", provider="OpenAI", provider_id="openai", name="GPT-4o", multi_modal=True),
    ModelSelector(id="gpt-4o-mini", provider="OpenAI", provider_id="openai", name="GPT-4o mini", multi_modal=True),
    ModelSelector(id="gemini-1.5-pro-002", provider="Google", provider_id="google", name="Gemini 1.5 Pro", multi_modal=True),
    ModelSelector(id="mistral-large-latest", provider="Mistral", provider_id="mistral", name="Mistral Large", multi_modal=False),
    ModelSelector(id="llama-3.3-70b-versatile", provider="Groq", provider_id="groq", name="Llama 3.3 70B", multi_modal=False),
    ModelSelector(
        id="meta-llama/Llama-3.3-70B-Instruct-Turbo",
        provider="Together AI",
        provider_id="togetherai",
        name="Llama 3.3 70B Turbo",
        multi_modal=False,
    ),
    ModelSelector(
        id="accounts/fireworks/models/qwen2p5-coder-32b-instruct",
        provider="Fireworks",
        provider_id="fireworks",
        name="Qwen2.5 Coder 32B",
        multi_modal=False,
    ),
    ModelSelector(id="grok-2-latest", provider="xAI", provider_id="xai", name="Grok 2", multi_modal=False),
    ModelSelector(id="deepseek-chat", provider="DeepSeek", provider_id="deepseek", name="DeepSeek V3", multi_modal=False),
    ModelSelector(id="qwen2.5-coder:14b", provider="Ollama", provider_id="ollama", name="Qwen2.5 Coder 14B", multi_modal=False),
]


def find_model(model_id: str) -> ModelSelector | None:
    for model in MODELS:
        if model.id == model_id:
            return model
    return None
