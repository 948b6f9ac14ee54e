"""Prompt text for the image and video providers.

All functions are pure: the same form snapshot always produces the same text.
"""

FEMALE_LABELS = {"female", "woman", "女性模特兒", "女性"}

SHOT_INSTRUCTIONS = {
    "fullBody": "CRITICAL: The photograph MUST be a full-body shot, showing the model from head to toe.",
    "medium": "CRITICAL: The photograph MUST be a medium shot, capturing the model from the waist up.",
    "closeUp": "CRITICAL: The photograph MUST be a close-up shot, focusing on the model's head and shoulders.",
}

THREE_SHOT_SUMMARY = """The final output will be a set of three distinct, full-frame images from this scene:
1. A full-body shot.
2. A medium shot (from the waist up).
3. A close-up shot (head and shoulders)."""

VIDEO_PROMPT = (
    "Make this a subtle, high-quality cinemagraph. The model's hair and "
    "clothing should move slightly in a gentle breeze."
)


def _gender_text(model_gender):
    return "female" if model_gender.strip().lower() in FEMALE_LABELS else "male"


def _scene(request):
    prompt = (
        f"A professional fashion photoshoot featuring '{request.product_name}'.\n"
        f"A {_gender_text(request.model_gender)} model with a {request.clothing_style} "
        f"aesthetic is wearing clothing suitable for the {request.clothing_season}.\n"
        f"The setting is {request.background}.\n"
        f"The model has a {request.expression} expression and is in a {request.pose} pose."
    )
    if request.additional_description:
        prompt += f"\nAdditional details: {request.additional_description}."
    return prompt


def build_display_prompt(request):
    """Human-readable prompt shown next to the results."""
    prompt = _scene(request)
    if request.has_face_image:
        prompt += "\nCRITICAL: The model's face must be identical to the face in the provided reference image."
    if request.has_object_image:
        prompt += "\nCRITICAL: The scene must prominently feature the object from the provided reference image."
    prompt += (
        f"\nPhotographic style: Lit with {request.lighting}. The image should be detailed, "
        "ultra-realistic, photorealistic, high resolution (8k), cinematic, with a shallow "
        "depth of field and beautiful bokeh.\n"
    )
    return prompt + THREE_SHOT_SUMMARY


def build_api_base_prompt(request):
    """Base prompt for one provider call: a single frame, never a collage."""
    prompt = _scene(request)
    prompt += (
        f"\nPhotographic style: Lit with {request.lighting}. This must be a single, "
        "full-frame photograph. The image should be detailed, ultra-realistic, "
        "photorealistic, high resolution (8k), cinematic, with a shallow depth of field "
        "and beautiful bokeh. Do not create collages, diptychs, triptychs, or any "
        "split-screen images."
    )
    return prompt


def add_shot_instruction(base_prompt, shot_kind):
    return f"{base_prompt}\n{SHOT_INSTRUCTIONS[shot_kind]}"


def add_reference_image_instructions(prompt, has_face_image, has_object_image):
    """Point the model at the reference parts, in the order they are sent."""
    result = prompt
    if has_face_image:
        result += "\nCRITICAL INSTRUCTION: The model's face must be identical to the face in the first provided image."
    if has_object_image:
        image_ref = "second" if has_face_image else "first"
        result += (
            "\nCRITICAL INSTRUCTION: The scene must prominently feature the object "
            f"from the {image_ref} provided image."
        )
    return result


def build_shot_prompt(request, shot_kind):
    prompt = add_shot_instruction(build_api_base_prompt(request), shot_kind)
    return add_reference_image_instructions(
        prompt, request.has_face_image, request.has_object_image
    )


def build_video_prompt():
    return VIDEO_PROMPT
