# frontend/gradio_app.py
import logging
import os

import gradio as gr

from .api_client import BackendError
from .graph import GraphError, NodeType
from .session import CanvasSession

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

session = CanvasSession()

NODE_TYPES = [t.value for t in NodeType]
ASPECT_RATIOS = ["Auto", "1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3", "21:9", "5:4", "4:5"]
RESOLUTIONS = ["Auto", "1K", "2K", "4K", "720p", "1080p"]


# ========== 画布状态输出 ==========
def _node_choices():
    return [(f"{node.type.value} · {node.prompt[:20] or node.id[:8]}", node.id) for node in session.graph]


def _canvas_state(message="", selected=None):
    state = {
        "workflowId": session.tracker.workflow_id,
        "title": session.tracker.title,
        "dirty": session.tracker.is_dirty,
        **session.graph.to_dict(),
    }
    choices = _node_choices()
    ids = [value for _, value in choices]
    if selected not in ids:
        selected = None
    return (
        state,
        gr.Dropdown(choices=choices, value=selected),
        gr.Dropdown(choices=choices, value=None),
        message,
    )


def _preview(node_id):
    node = session.graph.get(node_id) if node_id else None
    if node is None or not node.result_url or node.type == NodeType.VIDEO:
        return None
    return session.client.resolve_url(node.result_url)


# ========== 节点操作 ==========
def add_node(node_type, parent_id):
    try:
        node = session.graph.add_node(node_type, (100, 100), parent_id=parent_id or None)
    except GraphError as e:
        return _canvas_state(f"添加失败: {e}")
    return _canvas_state(f"已添加节点 {node.id}", selected=node.id)


def append_after(node_id, node_type):
    if not node_id:
        return _canvas_state("请先选择节点")
    try:
        node = session.graph.append_after(node_id, node_type)
    except GraphError as e:
        return _canvas_state(f"添加失败: {e}")
    return _canvas_state(f"已在后方添加节点 {node.id}", selected=node.id)


def insert_before(node_id, node_type):
    if not node_id:
        return _canvas_state("请先选择节点")
    try:
        node = session.graph.insert_before(node_id, node_type)
    except GraphError as e:
        return _canvas_state(f"插入失败: {e}")
    return _canvas_state(f"已在前方插入节点 {node.id}", selected=node.id)


def update_settings(node_id, prompt, model, aspect_ratio, resolution):
    if not node_id:
        return _canvas_state("请先选择节点")
    try:
        session.graph.update_node(node_id, prompt=prompt or "", model=model or "",
                                  aspect_ratio=aspect_ratio, resolution=resolution)
    except GraphError as e:
        return _canvas_state(f"更新失败: {e}", selected=node_id)
    return _canvas_state("节点已更新", selected=node_id)


def delete_node(node_id):
    if not node_id:
        return _canvas_state("请先选择节点")
    session.graph.delete_node(node_id)
    return _canvas_state(f"已删除节点 {node_id}")


def connect_nodes(parent_id, child_id):
    if not parent_id or not child_id:
        return _canvas_state("请选择上游和下游节点", selected=child_id)
    try:
        created = session.graph.connect(parent_id, child_id)
    except GraphError as e:
        return _canvas_state(f"连线失败: {e}", selected=child_id)
    return _canvas_state("已连线" if created else "连线已存在", selected=child_id)


def disconnect_nodes(parent_id, child_id):
    if not parent_id or not child_id:
        return _canvas_state("请选择上游和下游节点", selected=child_id)
    removed = session.graph.disconnect(parent_id, child_id)
    return _canvas_state("已断开" if removed else "连线不存在", selected=child_id)


def load_node_settings(node_id):
    node = session.graph.get(node_id) if node_id else None
    if node is None:
        return "", "", "Auto", "Auto", None
    return node.prompt, node.model, node.aspect_ratio, node.resolution, _preview(node_id)


# ========== 生成 ==========
async def generate(node_id):
    if not node_id:
        return (*_canvas_state("请先选择节点"), None)
    dispatched = await session.generate(node_id)
    node = session.graph.get(node_id)
    if not dispatched:
        message = "未发起生成（提示词为空、节点正在生成或类型不支持）"
    elif node is not None and node.error_message:
        message = f"生成失败: {node.error_message}"
    else:
        message = "生成完成"
    return (*_canvas_state(message, selected=node_id), _preview(node_id))


async def check_recovery():
    recovered = await session.recover()
    return _canvas_state(f"恢复了 {len(recovered)} 个节点" if recovered else "没有可恢复的节点")


# ========== Workflow ==========
async def save_workflow(title):
    session.tracker.set_title(title or "")
    try:
        saved = await session.tracker.save()
    except BackendError as e:
        return _canvas_state(f"保存失败: {e}")
    return _canvas_state(f"已保存 {saved.get('id')}")


def list_workflows():
    try:
        workflows = session.client.list_workflows()
    except BackendError as e:
        return gr.Dropdown(choices=[], value=None), f"加载失败: {e}"
    choices = [(f"{wf['title']} ({wf['nodeCount']})", wf["id"]) for wf in workflows]
    return gr.Dropdown(choices=choices, value=None), f"共 {len(choices)} 个画布"


async def load_workflow(workflow_id):
    if not workflow_id:
        return _canvas_state("请选择要加载的画布")
    try:
        await session.load(workflow_id)
    except BackendError as e:
        return _canvas_state(f"加载失败: {e}")
    return _canvas_state(f"已加载 {workflow_id}")


def new_canvas():
    session.new_canvas()
    return _canvas_state("已新建画布")


async def start_background():
    session.start()


# ========== 构建界面 ==========
with gr.Blocks(title="FrameChain") as demo:
    gr.Markdown("# FrameChain 画布")

    with gr.Row():
        with gr.Column(scale=1):
            gr.Markdown("### 画布")
            title_input = gr.Textbox(label="标题", value="Untitled Canvas")
            with gr.Row():
                save_btn = gr.Button("保存")
                new_btn = gr.Button("新建画布")
            workflow_dropdown = gr.Dropdown(label="已保存的画布", choices=[], interactive=True)
            with gr.Row():
                refresh_btn = gr.Button("刷新列表")
                load_btn = gr.Button("加载")
            recover_btn = gr.Button("检查进行中的生成")

            gr.Markdown("### 节点")
            node_type = gr.Dropdown(NODE_TYPES, label="节点类型", value=NodeType.IMAGE.value)
            selected_node = gr.Dropdown(label="当前节点", choices=[], interactive=True)
            with gr.Row():
                add_btn = gr.Button("添加")
                append_btn = gr.Button("后方追加")
                insert_btn = gr.Button("前方插入")
                delete_btn = gr.Button("删除", variant="stop")
            other_node = gr.Dropdown(label="上游节点（连线）", choices=[], interactive=True)
            with gr.Row():
                connect_btn = gr.Button("连线到当前节点")
                disconnect_btn = gr.Button("断开")

        with gr.Column(scale=2):
            prompt_input = gr.Textbox(label="提示词", lines=4)
            with gr.Row():
                model_input = gr.Textbox(label="模型 ID")
                aspect_input = gr.Dropdown(ASPECT_RATIOS, label="宽高比", value="Auto")
                resolution_input = gr.Dropdown(RESOLUTIONS, label="分辨率", value="Auto")
            with gr.Row():
                update_btn = gr.Button("更新设置")
                generate_btn = gr.Button("✨ 生成", variant="primary")
            status_text = gr.Textbox(label="状态", interactive=False)
            preview = gr.Image(label="结果预览")
            canvas_json = gr.JSON(label="画布数据")

    canvas_outputs = [canvas_json, selected_node, other_node, status_text]

    # ===== 事件绑定 =====
    add_btn.click(fn=add_node, inputs=[node_type, other_node], outputs=canvas_outputs)
    append_btn.click(fn=append_after, inputs=[selected_node, node_type], outputs=canvas_outputs)
    insert_btn.click(fn=insert_before, inputs=[selected_node, node_type], outputs=canvas_outputs)
    delete_btn.click(fn=delete_node, inputs=selected_node, outputs=canvas_outputs)
    connect_btn.click(fn=connect_nodes, inputs=[other_node, selected_node], outputs=canvas_outputs)
    disconnect_btn.click(fn=disconnect_nodes, inputs=[other_node, selected_node], outputs=canvas_outputs)
    update_btn.click(
        fn=update_settings,
        inputs=[selected_node, prompt_input, model_input, aspect_input, resolution_input],
        outputs=canvas_outputs
    )
    selected_node.change(
        fn=load_node_settings,
        inputs=selected_node,
        outputs=[prompt_input, model_input, aspect_input, resolution_input, preview]
    )
    generate_btn.click(fn=generate, inputs=selected_node, outputs=canvas_outputs + [preview])
    recover_btn.click(fn=check_recovery, outputs=canvas_outputs)

    save_btn.click(fn=save_workflow, inputs=title_input, outputs=canvas_outputs)
    new_btn.click(fn=new_canvas, outputs=canvas_outputs)
    refresh_btn.click(fn=list_workflows, outputs=[workflow_dropdown, status_text])
    load_btn.click(fn=load_workflow, inputs=workflow_dropdown, outputs=canvas_outputs)

    # 页面加载时启动恢复轮询和自动保存，并加载画布列表
    demo.load(fn=start_background)
    demo.load(fn=list_workflows, outputs=[workflow_dropdown, status_text])

if __name__ == "__main__":
    demo.launch(server_port=7860)
